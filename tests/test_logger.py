"""Tests for JSON logging."""

import asyncio
import datetime as dt
import json
import logging

from discord_radio.logger import ContextFilter, JsonFormatter, gha_notice, log_context, setup_logging


def _record(**extra):
    record = logging.LogRecord("discord_radio.pager", logging.INFO, __file__, 1, "Collected %s", ("x",), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_includes_extra_fields():
    """Fields passed via extra= appear at the top level."""
    line = JsonFormatter().format(_record(channel_id="123", count=4))
    payload = json.loads(line)
    assert payload["message"] == "Collected x"
    assert payload["logger"] == "discord_radio.pager"
    assert payload["level"] == "INFO"
    assert payload["channel_id"] == "123"
    assert payload["count"] == 4
    assert "lineno" not in payload


def test_json_formatter_stringifies_unserializable_values():
    """Values json cannot encode fall back to str()."""
    when = dt.datetime(2024, 1, 2, tzinfo=dt.timezone.utc)
    payload = json.loads(JsonFormatter().format(_record(when=when)))
    assert payload["when"] == str(when)


def test_setup_logging_quiets_httpx():
    """Per-request httpx logs stay below the root level."""
    setup_logging("DEBUG")
    try:
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        logging.getLogger().handlers.clear()


def test_gha_notice(capsys):
    """Known levels print workflow annotations; others print nothing."""
    gha_notice("error", "boom")
    gha_notice("debug", "quiet")
    assert capsys.readouterr().out == "::error::boom\n"


def test_log_context_stamps_records():
    """Records inside log_context carry its fields; explicit extras win."""
    flt = ContextFilter()
    with log_context(channel_id="123"):
        with log_context(episode="ALL"):
            inner = _record()
            flt.filter(inner)
            overridden = _record(channel_id="999")
            flt.filter(overridden)
        outer = _record()
        flt.filter(outer)
    after = _record()
    flt.filter(after)
    assert (inner.channel_id, inner.episode) == ("123", "ALL")
    assert overridden.channel_id == "999"
    assert outer.channel_id == "123" and not hasattr(outer, "episode")
    assert not hasattr(after, "channel_id")


def test_log_context_is_per_task():
    """Concurrent channel tasks keep their own context."""
    flt = ContextFilter()

    async def tagged(channel_id):
        with log_context(channel_id=channel_id):
            await asyncio.sleep(0)
            record = _record()
            flt.filter(record)
            return record.channel_id

    async def go():
        return await asyncio.gather(tagged("a"), tagged("b"))

    assert asyncio.run(go()) == ["a", "b"]


def test_setup_logging_emits_context_fields(capsys):
    """The stdout handler writes log_context fields into the JSON line."""
    setup_logging("INFO")
    try:
        with log_context(channel_id="42"):
            logging.getLogger("discord_radio.main").info("Fetched articles", extra={"usable": 2})
    finally:
        logging.getLogger().handlers.clear()
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["channel_id"] == "42"
    assert payload["usable"] == 2


def test_gha_notice_escapes_newlines(capsys):
    """Multi-line messages stay on one annotation line."""
    gha_notice("warning", "Posting failed: 50%\nretry later")
    assert capsys.readouterr().out == "::warning::Posting failed: 50%25%0Aretry later\n"
