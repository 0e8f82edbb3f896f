from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml


CHANNEL_ID_SEPARATORS = re.compile(r"[\s,;，；、]+")


@dataclass(frozen=True)
class DiscordConfig:
    token: str
    channel_ids: Tuple[str, ...]
    forum_tag_ids: Tuple[str, ...] = ()
    api_base: str = "https://discord.com/api/v10"
    page_size: int = 100
    # None keeps honouring retry-after for as long as Discord asks
    max_rate_limit_retries: Optional[int] = None
    archived_thread_pages: int = 10
    archived_thread_slack_days: float = 7.0


@dataclass(frozen=True)
class WindowConfig:
    utc_offset_hours: float = 9
    boundary_hour: int = 4
    zone_label: str = "JST"


@dataclass(frozen=True)
class FetchConfig:
    max_urls: int = 20
    max_text_chars: int = 2000
    max_concurrency: int = 4
    timeout: float = 15.0
    embed_timeout: float = 12.0
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )


@dataclass(frozen=True)
class TTSConfig:
    api_key: str
    group_id: str
    endpoint: str = "https://api.minimax.io/v1/t2a_v2"
    model: str = "speech-2.5-hd-preview"
    voice_id: str = ""
    voice_id_a: str = ""
    voice_id_b: str = ""
    audio_format: str = "mp3"
    speed: float = 1.0
    language_boost: str = "Japanese"
    mode: str = "monologue"
    max_chars_per_chunk: int = 1500
    pacing_delay: float = 0.3
    timeout: float = 120.0
    # None retries 429s until the provider lets us through
    max_attempts: Optional[int] = None
    backoff: float = 1.0
    max_retry_delay: float = 60.0


@dataclass(frozen=True)
class ScriptConfig:
    provider: str = "openai"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1200


@dataclass(frozen=True)
class OutputConfig:
    out_dir: str = "out"
    aggregation_mode: str = "single"
    tag_id3: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    dump_messages: bool = False


@dataclass(frozen=True)
class AppConfig:
    discord: DiscordConfig
    window: WindowConfig
    fetch: FetchConfig
    tts: TTSConfig
    script: ScriptConfig
    output: OutputConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def posting_channel_id(self) -> str:
        return self.discord.channel_ids[0]

    @property
    def collection_channel_ids(self) -> Tuple[str, ...]:
        # A single configured channel is both the source and the target
        return self.discord.channel_ids[1:] or self.discord.channel_ids[:1]


def split_ids(raw: Any) -> Tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, (list, tuple)):
        return tuple(str(x).strip() for x in raw if str(x).strip())
    return tuple(s for s in CHANNEL_ID_SEPARATORS.split(str(raw)) if s)


def _secret(section: Dict[str, Any], key: str, default_env: str, env: Dict[str, str]) -> str:
    env_name = section.get(f"{key}_env", default_env)
    return env.get(env_name, "") or str(section.get(key, "") or "")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def load_config(path: str = "config.yaml", env: Optional[Dict[str, str]] = None) -> AppConfig:
    env = dict(os.environ) if env is None else env
    data: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    discord = data.get("discord", {}) or {}
    window = data.get("window", {}) or {}
    fetch = data.get("fetch", {}) or {}
    tts = data.get("tts", {}) or {}
    script = data.get("script", {}) or {}
    output = data.get("output", {}) or {}
    logging_cfg = data.get("logging", {}) or {}

    channel_ids = split_ids(env.get("DISCORD_CHANNEL_IDS")) or split_ids(discord.get("channel_ids"))
    tag_ids = split_ids(env.get("DISCORD_FORUM_TAG_IDS")) or split_ids(discord.get("forum_tag_ids"))
    max_rl = discord.get("max_rate_limit_retries")
    max_attempts = tts.get("max_attempts")

    return AppConfig(
        discord=DiscordConfig(
            token=_secret(discord, "token", "DISCORD_BOT_TOKEN", env),
            channel_ids=channel_ids,
            forum_tag_ids=tag_ids,
            api_base=discord.get("api_base", "https://discord.com/api/v10"),
            page_size=int(discord.get("page_size", 100)),
            max_rate_limit_retries=int(max_rl) if max_rl is not None else None,
            archived_thread_pages=int(discord.get("archived_thread_pages", 10)),
            archived_thread_slack_days=float(discord.get("archived_thread_slack_days", 7.0)),
        ),
        window=WindowConfig(
            utc_offset_hours=float(window.get("utc_offset_hours", 9)),
            boundary_hour=int(window.get("boundary_hour", 4)),
            zone_label=window.get("zone_label", "JST"),
        ),
        fetch=FetchConfig(
            max_urls=int(env.get("MAX_URLS") or fetch.get("max_urls", 20)),
            max_text_chars=int(env.get("MAX_TEXT_CHARS") or fetch.get("max_text_chars", 2000)),
            max_concurrency=int(env.get("MAX_CONCURRENCY") or fetch.get("max_concurrency", 4)),
            timeout=float(fetch.get("timeout", 15.0)),
            embed_timeout=float(fetch.get("embed_timeout", 12.0)),
        ),
        tts=TTSConfig(
            api_key=_secret(tts, "api_key", "MINIMAX_API_KEY", env),
            group_id=_secret(tts, "group_id", "MINIMAX_GROUP_ID", env),
            endpoint=env.get("MINIMAX_T2A_URL") or tts.get("endpoint", "https://api.minimax.io/v1/t2a_v2"),
            model=env.get("MINIMAX_T2A_MODEL") or tts.get("model", "speech-2.5-hd-preview"),
            voice_id=env.get("MINIMAX_VOICE_ID") or tts.get("voice_id", ""),
            voice_id_a=env.get("MINIMAX_VOICE_ID_A") or tts.get("voice_id_a", ""),
            voice_id_b=env.get("MINIMAX_VOICE_ID_B") or tts.get("voice_id_b", ""),
            audio_format=env.get("MINIMAX_AUDIO_FORMAT") or tts.get("audio_format", "mp3"),
            speed=float(env.get("MINIMAX_SPEED") or tts.get("speed", 1.0)),
            language_boost=tts.get("language_boost", "Japanese"),
            mode=tts.get("mode", "monologue"),
            max_chars_per_chunk=int(tts.get("max_chars_per_chunk", 1500)),
            pacing_delay=float(tts.get("pacing_delay", 0.3)),
            timeout=float(tts.get("timeout", 120.0)),
            max_attempts=int(max_attempts) if max_attempts is not None else None,
            backoff=float(tts.get("backoff", 1.0)),
            max_retry_delay=float(tts.get("max_retry_delay", 60.0)),
        ),
        script=ScriptConfig(
            provider=script.get("provider", "openai"),
            api_key=_secret(script, "api_key", "OPENAI_API_KEY", env),
            model=env.get("OPENAI_MODEL") or script.get("model", "gpt-4o-mini"),
            temperature=float(script.get("temperature", 0.7)),
            max_tokens=int(script.get("max_tokens", 1200)),
        ),
        output=OutputConfig(
            out_dir=output.get("out_dir", "out"),
            aggregation_mode=env.get("AGGREGATION_MODE") or output.get("aggregation_mode", "single"),
            tag_id3=_as_bool(output.get("tag_id3", True)),
        ),
        logging=LoggingConfig(
            level=env.get("LOG_LEVEL") or logging_cfg.get("level", "INFO"),
            dump_messages=_as_bool(env.get("LOG_DISCORD_DUMP") or logging_cfg.get("dump_messages", False)),
        ),
    )


def monologue_voice(cfg: TTSConfig) -> str:
    return cfg.voice_id or cfg.voice_id_a or cfg.voice_id_b


def require_secrets(cfg: AppConfig) -> None:
    missing: List[str] = []
    if not cfg.discord.token:
        missing.append("DISCORD_BOT_TOKEN")
    if not cfg.discord.channel_ids:
        missing.append("DISCORD_CHANNEL_IDS")
    if not cfg.tts.api_key:
        missing.append("MINIMAX_API_KEY")
    if not cfg.tts.group_id:
        missing.append("MINIMAX_GROUP_ID")
    if not monologue_voice(cfg.tts):
        missing.append("MINIMAX_VOICE_ID")
    if missing:
        raise ValueError(f"Missing required configuration: {', '.join(missing)}")


def validate_config(cfg: AppConfig) -> List[str]:
    """Lightweight config validation that logs warnings but avoids hard failures.

    Returns a list of warning strings (empty if none).
    """
    warnings: List[str] = []

    if len(cfg.discord.channel_ids) == 1:
        warnings.append("only one channel configured; it is used both as posting and collection channel")

    if cfg.output.aggregation_mode not in {"single", "per_channel"}:
        warnings.append(f"output.aggregation_mode '{cfg.output.aggregation_mode}' not in ['single','per_channel']; using 'single'")

    if cfg.tts.mode not in {"monologue", "dialogue"}:
        warnings.append(f"tts.mode '{cfg.tts.mode}' not in ['monologue','dialogue']; using 'monologue'")
    if cfg.tts.mode == "dialogue" and not (cfg.tts.voice_id_a and cfg.tts.voice_id_b):
        warnings.append("dialogue mode without voice_id_a/voice_id_b; falling back to the monologue voice")

    if cfg.tts.max_attempts is None:
        warnings.append("tts.max_attempts unset; rate-limited TTS requests are retried without limit")

    if cfg.script.provider == "openai" and not cfg.script.api_key:
        warnings.append("script.provider is openai but no API key is set; using the template script")

    if not 0 <= cfg.window.boundary_hour < 24:
        warnings.append(f"window.boundary_hour {cfg.window.boundary_hour} outside 0-23")

    return warnings
