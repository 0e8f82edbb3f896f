from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx

from .config import TTSConfig, monologue_voice
from .discord_client import retry_after_seconds
from .models import AudioSegment, DialogueTurn, NarrationUnit, Speaker


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_HEX = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


class TTSError(RuntimeError):
    def __init__(self, message: str, ordinal: Optional[int] = None) -> None:
        if ordinal is not None:
            message = f"segment {ordinal}: {message}"
        super().__init__(message)
        self.ordinal = ordinal


class EnvelopeKind(Enum):
    RAW = "raw"
    HEX = "hex"
    URL = "url"
    BASE64 = "base64"


@dataclass(frozen=True)
class AudioEnvelope:
    kind: EnvelopeKind
    payload: Union[bytes, str]


@dataclass(frozen=True)
class RetryPolicy:
    """How rate-limited (429) synthesis requests are retried.

    ``max_attempts=None`` retries for as long as the provider keeps
    answering 429. The wait is never shorter than the provider's
    retry-after; ``backoff`` above 1 grows it per attempt up to ``max_delay``.
    """

    max_attempts: Optional[int] = None
    backoff: float = 1.0
    max_delay: float = 60.0

    def delay(self, retry_after: float, attempt: int) -> float:
        grown = min(retry_after * (self.backoff ** (attempt - 1)), self.max_delay)
        return max(retry_after, grown)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


def split_into_chunks(text: str, chunk_size: int) -> List[str]:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


def _first_str(*candidates: Any) -> Optional[str]:
    for c in candidates:
        if isinstance(c, str) and c:
            return c
    return None


def classify_response(content_type: str, body: bytes) -> AudioEnvelope:
    """Decide which of the provider's response shapes ``body`` is.

    Tried in order: binary audio, ``data.audio`` (hex), an ``audio_url``
    pointer, then base64 fields. Raises ``TTSError`` on a provider-level
    error status or when no shape matches.
    """
    ctype = (content_type or "").lower()
    if "audio" in ctype or "octet-stream" in ctype:
        return AudioEnvelope(EnvelopeKind.RAW, body)

    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise TTSError(f"unrecognized response ({ctype or 'no content type'}, {len(body)} bytes)")
    if not isinstance(data, dict):
        raise TTSError(f"unrecognized response envelope: {str(data)[:300]}")

    base_resp = data.get("base_resp")
    if isinstance(base_resp, dict) and base_resp.get("status_code", 0) != 0:
        raise TTSError(
            f"provider error status_code={base_resp.get('status_code')} {base_resp.get('status_msg', '')}".strip()
        )

    inner = data.get("data")
    inner_dict = inner if isinstance(inner, dict) else {}
    inner_first = inner[0] if isinstance(inner, list) and inner and isinstance(inner[0], dict) else {}

    audio = _first_str(inner_dict.get("audio"))
    if audio:
        kind = EnvelopeKind.HEX if _HEX.match(audio) else EnvelopeKind.BASE64
        return AudioEnvelope(kind, audio)

    pointer = _first_str(data.get("audio_url"), inner_dict.get("audio_url"))
    if pointer:
        return AudioEnvelope(EnvelopeKind.URL, pointer)

    b64 = _first_str(
        data.get("audio_base64"),
        inner_dict.get("audio_base64"),
        inner_first.get("audio_base64"),
        data.get("audio"),
    )
    if b64:
        return AudioEnvelope(EnvelopeKind.BASE64, b64)

    detail = data.get("message") or data.get("msg") or data.get("error") or json.dumps(data)[:300]
    raise TTSError(f"unrecognized response envelope: {detail}")


async def decode_envelope(envelope: AudioEnvelope, client: httpx.AsyncClient) -> bytes:
    kind, payload = envelope.kind, envelope.payload
    try:
        if kind is EnvelopeKind.RAW:
            return bytes(payload)  # type: ignore[arg-type]
        if kind is EnvelopeKind.HEX:
            return bytes.fromhex(str(payload))
        if kind is EnvelopeKind.BASE64:
            return base64.b64decode(str(payload), validate=True)
    except (ValueError, binascii.Error) as e:
        raise TTSError(f"could not decode {kind.value} audio: {e}") from e

    try:
        resp = await client.get(str(payload), follow_redirects=True)
    except httpx.HTTPError as e:
        raise TTSError(f"audio_url fetch failed: {e}") from e
    if not resp.is_success:
        raise TTSError(f"audio_url fetch failed with {resp.status_code}")
    return resp.content


class SpeechSynthesizer:
    """MiniMax T2A v2 client producing ordered audio segments."""

    def __init__(
        self,
        cfg: TTSConfig,
        client: httpx.AsyncClient,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        self._client = client
        self.retry = retry or RetryPolicy(cfg.max_attempts, cfg.backoff, cfg.max_retry_delay)
        self._sleep = sleep
        self._headers = {
            "Authorization": f"Bearer {cfg.api_key}",
            "Content-Type": "application/json",
        }

    def voice_for(self, speaker: Optional[Speaker]) -> str:
        fallback = monologue_voice(self.cfg)
        if speaker is Speaker.A:
            return self.cfg.voice_id_a or fallback
        if speaker is Speaker.B:
            return self.cfg.voice_id_b or fallback
        return fallback

    def _body(self, text: str, voice_id: str) -> Dict[str, Any]:
        return {
            "model": self.cfg.model,
            "text": text,
            "stream": False,
            "voice_setting": {
                "voice_id": voice_id,
                "speed": self.cfg.speed,
                "vol": 1,
                "pitch": 0,
            },
            "audio_setting": {
                "sample_rate": 32000,
                "bitrate": 128000,
                "format": self.cfg.audio_format,
                "channel": 1,
            },
            "output_format": "hex",
            "language_boost": self.cfg.language_boost,
        }

    async def request(self, text: str, voice_id: str, ordinal: int = 0) -> bytes:
        body = self._body(text, voice_id)
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await self._client.post(
                    self.cfg.endpoint,
                    params={"GroupId": self.cfg.group_id},
                    headers=self._headers,
                    json=body,
                    timeout=self.cfg.timeout,
                )
            except httpx.HTTPError as e:
                raise TTSError(f"request failed: {e}", ordinal) from e
            if resp.status_code == 429:
                if self.retry.exhausted(attempt):
                    raise TTSError(f"still rate limited after {attempt} attempts", ordinal)
                wait = self.retry.delay(retry_after_seconds(resp), attempt)
                logger.warning(
                    "TTS rate limited",
                    extra={"ordinal": ordinal, "attempt": attempt, "retry_after": wait},
                )
                await self._sleep(wait)
                continue
            if not resp.is_success:
                raise TTSError(f"API error {resp.status_code}: {resp.text[:300]}", ordinal)
            try:
                envelope = classify_response(resp.headers.get("content-type", ""), resp.content)
                audio = await decode_envelope(envelope, self._client)
            except TTSError as e:
                raise TTSError(str(e), ordinal) from e
            if not audio:
                raise TTSError("empty audio buffer", ordinal)
            logger.debug(
                "TTS segment done",
                extra={"ordinal": ordinal, "envelope": envelope.kind.value, "bytes": len(audio)},
            )
            return audio

    async def synthesize_monologue(self, text: str) -> List[AudioSegment]:
        if not text or not text.strip():
            logger.warning("No monologue text to synthesize")
            return []
        audio = await self.request(text, self.voice_for(None), 0)
        return [AudioSegment(ordinal=0, data=audio)]

    async def synthesize_dialogue(self, turns: Sequence[DialogueTurn]) -> List[AudioSegment]:
        segments: List[AudioSegment] = []
        ordinal = 0
        for turn in turns:
            voice = self.voice_for(turn.speaker)
            for chunk in split_into_chunks(turn.text, self.cfg.max_chars_per_chunk):
                if ordinal and self.cfg.pacing_delay > 0:
                    await self._sleep(self.cfg.pacing_delay)
                audio = await self.request(chunk, voice, ordinal)
                segments.append(AudioSegment(ordinal=ordinal, data=audio, speaker=turn.speaker))
                ordinal += 1
        logger.info("Synthesized dialogue", extra={"turns": len(turns), "segments": len(segments)})
        return segments

    async def synthesize(self, unit: NarrationUnit) -> List[AudioSegment]:
        if isinstance(unit, str):
            return await self.synthesize_monologue(unit)
        return await self.synthesize_dialogue(unit)
