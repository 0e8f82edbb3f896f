from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from dateutil import parser as dateparser

from .discord_client import FORUM_CHANNEL_TYPE
from .logger import log_context
from .models import ExtractedMessage, RawMessage, TimeWindow
from .urls import dedupe_urls, extract_candidates


logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_TYPE = 0


class MessageSource(Protocol):
    async def list_messages(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]: ...

    async def get_channel(self, channel_id: str) -> Dict[str, Any]: ...

    async def list_active_threads(self, guild_id: str) -> List[Dict[str, Any]]: ...

    async def list_archived_threads(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> Tuple[List[Dict[str, Any]], bool]: ...


async def collect_messages(
    source: MessageSource,
    channel_id: str,
    window: TimeWindow,
    page_size: int = 100,
) -> List[RawMessage]:
    """Walk a channel's history backwards and keep messages inside the window.

    The cursor is always the oldest message of the page just read, whether or
    not that message was kept, so a page straddling ``window.start`` still
    advances correctly. Stops on the first page that reaches past the start
    or that comes back short.
    """
    collected: List[RawMessage] = []
    before: Optional[str] = None
    pages = 0
    while True:
        payload = await source.list_messages(channel_id, before=before, limit=page_size)
        pages += 1
        if not payload:
            break
        page = sorted((RawMessage.from_payload(m) for m in payload), key=lambda m: m.timestamp)

        reached_start = False
        for msg in page:
            if window.contains(msg.timestamp):
                collected.append(msg)
            elif msg.timestamp < window.start:
                reached_start = True

        before = page[0].id
        if reached_start or len(payload) < page_size:
            break

    logger.debug(
        "Collected channel messages",
        extra={"channel_id": channel_id, "pages": pages, "count": len(collected)},
    )
    return collected


def _archive_timestamp(thread: Dict[str, Any]) -> Optional[str]:
    meta = thread.get("thread_metadata") or {}
    return meta.get("archive_timestamp") or thread.get("archive_timestamp")


def _parse_archive_timestamp(value: str, thread_id: Any, forum_id: str) -> Optional[dt.datetime]:
    try:
        return dateparser.isoparse(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning(
            "Skipping thread with unreadable archive timestamp",
            extra={"forum_id": forum_id, "thread_id": str(thread_id), "archive_timestamp": str(value)},
        )
        return None


async def discover_forum_threads(
    source: MessageSource,
    forum_id: str,
    window: TimeWindow,
    guild_id: Optional[str] = None,
    slack: dt.timedelta = dt.timedelta(days=7),
    max_pages: int = 10,
    page_size: int = 100,
) -> List[str]:
    """Thread ids under a forum channel that may hold messages in the window.

    Active threads of the guild are filtered to this parent. Archived threads
    are kept when their archive time is no older than ``window.start - slack``
    (threads archived shortly before the window may have been revived).
    ``max_pages`` caps the archive walk.
    """
    threads: Dict[str, Dict[str, Any]] = {}

    if guild_id:
        try:
            for t in await source.list_active_threads(guild_id):
                if str(t.get("parent_id")) == str(forum_id):
                    threads[str(t["id"])] = t
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Failed to list active threads",
                extra={"guild_id": guild_id, "forum_id": forum_id, "error": str(e)},
            )

    cutoff = window.start - slack
    before: Optional[str] = None
    for _ in range(max_pages):
        try:
            batch, has_more = await source.list_archived_threads(forum_id, before=before, limit=page_size)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Failed to list archived threads",
                extra={"forum_id": forum_id, "error": str(e)},
            )
            break
        if not batch:
            break
        last_ts: Optional[str] = None
        last: Optional[dt.datetime] = None
        for t in batch:
            last_ts = _archive_timestamp(t)
            if last_ts is None:
                last = None
                threads[str(t["id"])] = t
                continue
            last = _parse_archive_timestamp(last_ts, t.get("id"), forum_id)
            if last is not None and last >= cutoff:
                threads[str(t["id"])] = t

        # The cursor is the archive time of the oldest thread in the page
        if last is None:
            break
        before = last_ts
        if last < window.start or not has_more:
            break

    return list(threads)


async def _collect_thread(
    source: MessageSource, thread_id: str, window: TimeWindow, page_size: int
) -> List[RawMessage]:
    try:
        with log_context(thread_id=thread_id):
            return await collect_messages(source, thread_id, window, page_size=page_size)
    except Exception as e:  # noqa: BLE001
        logger.warning(
            "Failed to fetch thread messages; skipping",
            extra={"thread_id": thread_id, "error": str(e)},
        )
        return []


async def collect_forum_messages(
    source: MessageSource,
    forum_id: str,
    window: TimeWindow,
    guild_id: Optional[str] = None,
    slack: dt.timedelta = dt.timedelta(days=7),
    max_pages: int = 10,
    page_size: int = 100,
) -> List[RawMessage]:
    thread_ids = await discover_forum_threads(
        source, forum_id, window, guild_id=guild_id, slack=slack, max_pages=max_pages, page_size=page_size
    )
    logger.info("Discovered forum threads", extra={"forum_id": forum_id, "threads": len(thread_ids)})
    results = await asyncio.gather(*(_collect_thread(source, tid, window, page_size) for tid in thread_ids))
    return [msg for msgs in results for msg in msgs]


async def collect_channel(
    source: MessageSource,
    channel_id: str,
    window: TimeWindow,
    slack: dt.timedelta = dt.timedelta(days=7),
    max_archive_pages: int = 10,
    page_size: int = 100,
) -> List[RawMessage]:
    """Collect a channel's window, fanning out over threads for forum channels."""
    try:
        meta = await source.get_channel(channel_id)
    except Exception as e:  # noqa: BLE001
        logger.warning("Channel metadata unavailable", extra={"channel_id": channel_id, "error": str(e)})
        meta = {}
    logger.info(
        "Channel info",
        extra={"channel_id": channel_id, "type": meta.get("type"), "channel_name": meta.get("name")},
    )
    if meta.get("type") == FORUM_CHANNEL_TYPE:
        return await collect_forum_messages(
            source,
            channel_id,
            window,
            guild_id=meta.get("guild_id"),
            slack=slack,
            max_pages=max_archive_pages,
            page_size=page_size,
        )
    return await collect_messages(source, channel_id, window, page_size=page_size)


def extract_messages(messages: Iterable[RawMessage]) -> List[ExtractedMessage]:
    out: List[ExtractedMessage] = []
    for msg in messages:
        if msg.type != DEFAULT_MESSAGE_TYPE or msg.is_bot:
            continue
        combined = "\n".join([msg.content, *msg.attachment_urls, *msg.embed_urls, *msg.embed_texts])
        urls = tuple(dedupe_urls(extract_candidates(combined)))
        out.append(
            ExtractedMessage(
                id=msg.id,
                author=msg.author_name,
                timestamp=msg.timestamp,
                content=msg.content,
                urls=urls,
            )
        )
    return out


def ordered_urls(messages: Iterable[ExtractedMessage]) -> List[str]:
    """Unique normalized URLs in message order (oldest message first)."""
    seen: set[str] = set()
    ordered: List[str] = []
    for msg in sorted(messages, key=lambda m: m.timestamp):
        for u in msg.urls:
            if u not in seen:
                seen.add(u)
                ordered.append(u)
    return ordered
