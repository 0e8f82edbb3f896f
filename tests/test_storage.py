"""Tests for run output and file lookup helpers."""

import datetime as dt
import json
import os
import time

from discord_radio.models import Article, ChannelMaterial
from discord_radio.storage import latest_audio_file, latest_run_output, save_run_output


def test_save_run_output_name_and_content(tmp_path):
    """Runs are saved as run-YYYYMMDD-HHMM.json with datetimes as ISO strings."""
    now = dt.datetime(2024, 1, 2, 4, 5, tzinfo=dt.timezone.utc)
    payload = {
        "start": now,
        "urls": ("https://a.com/",),
        "material": ChannelMaterial(channel_id="c", articles=[Article(url="https://a.com/", title="A")]),
    }
    path = save_run_output(payload, str(tmp_path), now=now)
    assert os.path.basename(path) == "run-20240102-0405.json"
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["start"] == "2024-01-02T04:05:00+00:00"
    assert data["urls"] == ["https://a.com/"]
    assert data["material"]["articles"][0]["title"] == "A"


def test_latest_run_output(tmp_path):
    """The newest run file by name is loaded."""
    assert latest_run_output(str(tmp_path)) is None
    save_run_output({"title": "old"}, str(tmp_path), now=dt.datetime(2024, 1, 1, 4, 0))
    save_run_output({"title": "new"}, str(tmp_path), now=dt.datetime(2024, 1, 2, 4, 0))
    assert latest_run_output(str(tmp_path))["title"] == "new"


def test_latest_audio_file(tmp_path):
    """The most recently modified audio file wins; other files are ignored."""
    assert latest_audio_file(str(tmp_path / "nope")) is None
    older = tmp_path / "a.mp3"
    newer = tmp_path / "b.wav"
    older.write_bytes(b"1")
    newer.write_bytes(b"2")
    (tmp_path / "notes.txt").write_text("x")
    past = time.time() - 100
    os.utime(older, (past, past))
    assert latest_audio_file(str(tmp_path)) == str(newer)
