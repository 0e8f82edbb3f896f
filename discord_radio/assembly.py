from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from typing import List, Optional, Sequence

from .models import AudioSegment


logger = logging.getLogger(__name__)

# Containers whose streams can be joined by appending the raw bytes
FRAME_CONCAT_FORMATS = {"mp3"}


def _ordered(segments: Sequence[AudioSegment]) -> List[AudioSegment]:
    ordered = sorted(segments, key=lambda s: s.ordinal)
    for prev, curr in zip(ordered, ordered[1:]):
        if prev.ordinal == curr.ordinal:
            raise ValueError(f"duplicate segment ordinal {curr.ordinal}")
    return ordered


def _check_ffmpeg() -> str:
    path = shutil.which("ffmpeg")
    if not path:
        raise RuntimeError("ffmpeg is required to join non-MP3 audio but was not found on PATH")
    return path


def _ffmpeg_concat(segments: Sequence[AudioSegment], output_path: str, audio_format: str) -> None:
    ffmpeg = _check_ffmpeg()
    with tempfile.TemporaryDirectory(prefix="segments-") as tmp:
        list_path = os.path.join(tmp, "list.txt")
        with open(list_path, "w", encoding="utf-8") as lf:
            for seg in segments:
                seg_path = os.path.join(tmp, f"{seg.ordinal:05d}.{audio_format}")
                with open(seg_path, "wb") as sf:
                    sf.write(seg.data)
                lf.write(f"file '{seg_path}'\n")
        cmd = [
            ffmpeg,
            "-hide_banner",
            "-loglevel", "error",
            "-f", "concat",
            "-safe", "0",
            "-i", list_path,
            "-c", "copy",  # stream copy, no re-encode
            "-y",
            output_path,
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise RuntimeError(f"ffmpeg concat failed ({result.returncode}): {result.stderr.strip()[:500]}")


def assemble_episode(
    segments: Sequence[AudioSegment],
    output_path: str,
    audio_format: str = "mp3",
) -> Optional[str]:
    """Join segments in ordinal order into one file without re-encoding.

    Returns the written path, or ``None`` when there is nothing to join.
    """
    if not segments:
        logger.warning("No audio segments to assemble")
        return None
    ordered = _ordered(segments)
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

    if len(ordered) == 1 or audio_format.lower() in FRAME_CONCAT_FORMATS:
        with open(output_path, "wb") as f:
            for seg in ordered:
                f.write(seg.data)
    else:
        _ffmpeg_concat(ordered, output_path, audio_format.lower())

    logger.info(
        "Assembled episode",
        extra={"path": output_path, "segments": len(ordered), "bytes": os.path.getsize(output_path)},
    )
    return output_path
