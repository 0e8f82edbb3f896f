"""Shared fixtures for discord radio tests."""

import datetime as dt

import pytest

from discord_radio.config import TTSConfig
from discord_radio.models import TimeWindow


UTC = dt.timezone.utc


def ts(day, hour, minute=0):
    """ISO timestamp in January 2024, UTC."""
    return dt.datetime(2024, 1, day, hour, minute, tzinfo=UTC).isoformat()


def msg_payload(id, timestamp, content="", bot=False, type=0, attachments=None, embeds=None, author="alice"):
    return {
        "id": str(id),
        "type": type,
        "timestamp": timestamp,
        "content": content,
        "author": {"id": f"u-{author}", "username": author, "bot": bot},
        "attachments": attachments or [],
        "embeds": embeds or [],
    }


class FakeSource:
    """In-memory message source keyed by channel id.

    Messages per channel are payload dicts with numeric ids that grow with
    time, as Discord snowflakes do.
    """

    def __init__(self, messages=None, channels=None, active=None, archived=None, failing=()):
        self.messages = messages or {}
        self.channels = channels or {}
        self.active = active or []
        self.archived = archived or {}
        self.failing = set(failing)
        self.calls = []

    async def list_messages(self, channel_id, before=None, limit=100):
        self.calls.append(("messages", channel_id, before, limit))
        if channel_id in self.failing:
            raise RuntimeError(f"boom in {channel_id}")
        items = sorted(self.messages.get(channel_id, []), key=lambda m: int(m["id"]), reverse=True)
        if before is not None:
            items = [m for m in items if int(m["id"]) < int(before)]
        return items[:limit]

    async def get_channel(self, channel_id):
        self.calls.append(("channel", channel_id))
        if channel_id not in self.channels:
            raise RuntimeError("unknown channel")
        return self.channels[channel_id]

    async def list_active_threads(self, guild_id):
        self.calls.append(("active", guild_id))
        return list(self.active)

    async def list_archived_threads(self, channel_id, before=None, limit=100):
        """Page archived threads, listed newest first, past the ``before`` archive time."""
        self.calls.append(("archived", channel_id, before))
        if channel_id in self.failing:
            raise RuntimeError(f"archive listing failed in {channel_id}")
        items = self.archived.get(channel_id, [])
        start = 0
        if before is not None:
            for idx, t in enumerate(items):
                if (t.get("thread_metadata") or {}).get("archive_timestamp") == before:
                    start = idx + 1
        return list(items[start:start + limit]), start + limit < len(items)


@pytest.fixture
def window():
    """2024-01-02 04:00 JST back to 2024-01-01 04:00 JST."""
    return TimeWindow(
        start=dt.datetime(2024, 1, 1, 19, tzinfo=UTC),
        end=dt.datetime(2024, 1, 2, 19, tzinfo=UTC),
    )


@pytest.fixture
def tts_cfg():
    return TTSConfig(
        api_key="key",
        group_id="group-1",
        endpoint="https://tts.test/v1/t2a_v2",
        voice_id="narrator",
        voice_id_a="voice-a",
        voice_id_b="voice-b",
        max_chars_per_chunk=5,
        pacing_delay=0.3,
    )
