from __future__ import annotations

import datetime as dt
import json
import os
import re
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Optional


AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg", ".m4a", ".flac")
RUN_FILE = re.compile(r"^run-(\d{8})-(\d{4})\.json$")


def ensure_dirs(*paths: str) -> None:
    for p in paths:
        os.makedirs(p, exist_ok=True)


def _default(o: Any):
    if isinstance(o, (dt.datetime, dt.date)):
        return o.isoformat()
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def save_run_output(payload: Dict[str, Any], out_dir: str = "out", now: Optional[dt.datetime] = None) -> str:
    ensure_dirs(out_dir)
    now = now or dt.datetime.now(dt.timezone.utc)
    path = os.path.join(out_dir, f"run-{now:%Y%m%d-%H%M}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, default=_default)
    return path


def latest_run_output(out_dir: str = "out") -> Optional[Dict[str, Any]]:
    if not os.path.isdir(out_dir):
        return None
    runs = sorted(f for f in os.listdir(out_dir) if RUN_FILE.match(f))
    if not runs:
        return None
    with open(os.path.join(out_dir, runs[-1]), "r", encoding="utf-8") as f:
        return json.load(f)


def latest_audio_file(out_dir: str = "out") -> Optional[str]:
    if not os.path.isdir(out_dir):
        return None
    candidates = [
        os.path.join(out_dir, f) for f in os.listdir(out_dir) if f.lower().endswith(AUDIO_EXTENSIONS)
    ]
    if not candidates:
        return None
    return max(candidates, key=os.path.getmtime)
