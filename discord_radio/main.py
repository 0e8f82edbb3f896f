from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import httpx
from mutagen import MutagenError

from .assembly import assemble_episode
from .config import AppConfig, load_config, require_secrets, validate_config
from .discord_client import DiscordClient
from .extractor import ArticleExtractor
from .limiter import ConcurrencyLimiter, fetch_articles
from .logger import gha_notice, log_context, setup_logging
from .models import ChannelMaterial, Episode, NarrationUnit, RawMessage, TimeWindow
from .pager import MessageSource, collect_channel, extract_messages, ordered_urls
from .publisher import DiscordPublisher, tag_episode
from .script import ScriptBuilder, build_script_builder, parse_dialogue
from .storage import ensure_dirs, latest_audio_file, latest_run_output, save_run_output
from .tts import SpeechSynthesizer
from .window import format_local, resolve_window, window_label


logger = logging.getLogger(__name__)

SAMPLE_CHARS = 80


def _dump(channel_id: str, messages: Sequence[RawMessage], window: TimeWindow) -> None:
    logger.info(
        "Discord dump",
        extra={
            "channel_id": channel_id,
            "window": {"start": window.start.isoformat(), "end": window.end.isoformat()},
            "raw": [
                {
                    "id": m.id,
                    "timestamp": m.timestamp.isoformat(),
                    "author": m.author_name,
                    "bot": m.is_bot,
                    "content": m.content,
                    "attachments": m.attachment_urls,
                    "embeds": m.embed_urls,
                }
                for m in messages
            ],
        },
    )


async def collect_material(
    source: MessageSource,
    channel_id: str,
    window: TimeWindow,
    cfg: AppConfig,
    extractor: ArticleExtractor,
    limiter: ConcurrencyLimiter,
) -> ChannelMaterial:
    with log_context(channel_id=channel_id):
        return await _collect_material(source, channel_id, window, cfg, extractor, limiter)


async def _collect_material(
    source: MessageSource,
    channel_id: str,
    window: TimeWindow,
    cfg: AppConfig,
    extractor: ArticleExtractor,
    limiter: ConcurrencyLimiter,
) -> ChannelMaterial:
    messages = await collect_channel(
        source,
        channel_id,
        window,
        slack=dt.timedelta(days=cfg.discord.archived_thread_slack_days),
        max_archive_pages=cfg.discord.archived_thread_pages,
        page_size=cfg.discord.page_size,
    )
    if cfg.logging.dump_messages:
        _dump(channel_id, messages, window)

    extracted = extract_messages(messages)
    urls = ordered_urls(extracted)
    texts = [m.content for m in sorted(extracted, key=lambda m: m.timestamp) if m.content]
    logger.info(
        "Channel messages",
        extra={
            "channel_id": channel_id,
            "raw": len(messages),
            "kept": len(extracted),
            "with_urls": sum(1 for m in extracted if m.urls),
            "text_only": sum(1 for m in extracted if not m.urls and m.content),
            "urls": len(urls),
        },
    )
    if messages and not any(m.content.strip() or m.urls for m in extracted):
        logger.warning(
            "Messages were fetched but contain no text; check that the bot has the Message Content "
            "Intent and the View Channel / Read Message History permissions",
            extra={"channel_id": channel_id},
        )
    if texts:
        logger.info(
            "Sample texts",
            extra={"channel_id": channel_id, "samples": [t.replace("\n", " ")[:SAMPLE_CHARS] for t in texts[:3]]},
        )

    selected = urls[: cfg.fetch.max_urls]
    articles = await fetch_articles(urls, extractor, limiter, cfg.fetch.max_urls)
    logger.info(
        "Fetched articles",
        extra={"channel_id": channel_id, "requested": len(selected), "usable": len(articles)},
    )
    return ChannelMaterial(channel_id=channel_id, urls=selected, articles=articles, texts=texts)


def _as_narration(script: NarrationUnit, mode: str) -> NarrationUnit:
    if mode == "dialogue" and isinstance(script, str):
        return parse_dialogue(script)
    return script


async def produce_episode(
    materials: Sequence[ChannelMaterial],
    window: TimeWindow,
    cfg: AppConfig,
    builder: ScriptBuilder,
    synthesizer: SpeechSynthesizer,
    tag: str,
) -> Optional[Episode]:
    with log_context(episode=tag):
        script = await asyncio.to_thread(builder.build, materials, window)
        title = await asyncio.to_thread(builder.title, materials, window)
        segments = await synthesizer.synthesize(_as_narration(script, cfg.tts.mode))

    stamp = int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)
    out_path = os.path.join(cfg.output.out_dir, f"episode-{tag}-{stamp}.{cfg.tts.audio_format}")
    path = await asyncio.to_thread(assemble_episode, segments, out_path, cfg.tts.audio_format)
    if path is None:
        return None

    label = window_label(window, cfg.window.utc_offset_hours, cfg.window.zone_label)
    if cfg.output.tag_id3 and cfg.tts.audio_format.lower() == "mp3":
        try:
            tag_episode(path, title, artist="Discord Radio", date_str=label[:10])
        except MutagenError as e:
            logger.warning("ID3 tagging failed", extra={"path": path, "error": str(e)})
    return Episode(path=path, title=title, label=label, window=window)


def _run_payload(
    mode: str,
    window: TimeWindow,
    materials: Sequence[ChannelMaterial],
    episodes: Sequence[Episode],
) -> Dict[str, Any]:
    return {
        "mode": mode,
        "start": window.start,
        "end": window.end,
        "title": episodes[0].title if episodes else None,
        "episodes": [{"title": e.title, "file": e.path} for e in episodes],
        "material": {m.channel_id: m.to_dict() for m in materials},
    }


async def run_pipeline(cfg: AppConfig, window: TimeWindow) -> List[Episode]:
    """Collect, narrate and assemble. Returns the episodes written."""
    channels = cfg.collection_channel_ids
    logger.info(
        "Run window",
        extra={
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "label": window_label(window, cfg.window.utc_offset_hours, cfg.window.zone_label),
            "channels": list(channels),
        },
    )
    ensure_dirs(cfg.output.out_dir)
    builder = build_script_builder(cfg.script, cfg.window, mode=cfg.tts.mode)

    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0)) as http:
        source = DiscordClient(
            cfg.discord.token,
            client=http,
            api_base=cfg.discord.api_base,
            max_rate_limit_retries=cfg.discord.max_rate_limit_retries,
        )
        extractor = ArticleExtractor(
            http,
            timeout=cfg.fetch.timeout,
            embed_timeout=cfg.fetch.embed_timeout,
            max_chars=cfg.fetch.max_text_chars,
            user_agent=cfg.fetch.user_agent,
        )
        limiter = ConcurrencyLimiter(cfg.fetch.max_concurrency)
        synthesizer = SpeechSynthesizer(cfg.tts, http)

        materials = list(
            await asyncio.gather(
                *(collect_material(source, cid, window, cfg, extractor, limiter) for cid in channels)
            )
        )
        logger.info("Peak concurrent article fetches", extra={"peak": limiter.peak})

        episodes: List[Episode] = []
        if cfg.output.aggregation_mode == "per_channel":
            mode = "per_channel"
            for material in materials:
                episode = await produce_episode([material], window, cfg, builder, synthesizer, material.channel_id)
                if episode:
                    episodes.append(episode)
        else:
            mode = "single"
            episode = await produce_episode(materials, window, cfg, builder, synthesizer, "ALL")
            if episode:
                episodes.append(episode)
    save_run_output(_run_payload(mode, window, materials, episodes), cfg.output.out_dir)
    return episodes


def make_publisher(cfg: AppConfig) -> DiscordPublisher:
    return DiscordPublisher(
        cfg.discord.token,
        cfg.posting_channel_id,
        api_base=cfg.discord.api_base,
        forum_tag_ids=cfg.discord.forum_tag_ids,
    )


def post_latest(cfg: AppConfig, window: TimeWindow) -> bool:
    """Publish the newest audio file in the output directory."""
    path = latest_audio_file(cfg.output.out_dir)
    if not path:
        logger.warning("No audio file found for post-only mode", extra={"out_dir": cfg.output.out_dir})
        return False
    last_run = latest_run_output(cfg.output.out_dir) or {}
    label = window_label(window, cfg.window.utc_offset_hours, cfg.window.zone_label)
    episode = Episode(path=path, title=last_run.get("title") or "", label=label, window=window)
    make_publisher(cfg).publish(episode)
    return True


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="discord-radio",
        description="Turn the last 24 hours of Discord channels into a narrated audio episode.",
    )
    parser.add_argument("--config", default="config.yaml", help="path to the YAML config")
    parser.add_argument("--date", default=None, help="end the window at this date's boundary (YYYY-MM-DD)")
    parser.add_argument("--no-post", action="store_true", help="generate the episode without posting it")
    parser.add_argument("--post-only", action="store_true", help="post the newest episode from the output dir")
    return parser.parse_args(argv)


def run(cfg: AppConfig, args: argparse.Namespace) -> int:
    window = resolve_window(
        date=args.date,
        utc_offset_hours=cfg.window.utc_offset_hours,
        boundary_hour=cfg.window.boundary_hour,
    )
    logger.info(
        "Time window",
        extra={
            "start_local": format_local(window.start, cfg.window.utc_offset_hours, cfg.window.zone_label),
            "end_local": format_local(window.end, cfg.window.utc_offset_hours, cfg.window.zone_label),
        },
    )

    if args.post_only:
        return 0 if post_latest(cfg, window) else 1

    episodes = asyncio.run(run_pipeline(cfg, window))
    if not episodes:
        logger.warning("No episode produced")
        return 0

    if args.no_post or cfg.output.aggregation_mode == "per_channel":
        logger.info("Posting skipped", extra={"episodes": [e.path for e in episodes]})
        return 0
    try:
        make_publisher(cfg).publish(episodes[0])
    except Exception as e:  # noqa: BLE001
        # The episode is already on disk; --post-only can retry the upload
        gha_notice("WARNING", f"Posting failed: {e}")
        logger.warning("Failed to post audio", extra={"error": str(e), "path": episodes[0].path})
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(cfg.logging.level)
    for msg in validate_config(cfg):
        logger.warning("Config warning: %s", msg)
    try:
        require_secrets(cfg)
        code = run(cfg, args)
    except Exception as e:  # noqa: BLE001
        gha_notice("ERROR", f"Run failed: {e}")
        logger.exception("Fatal error during run")
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
