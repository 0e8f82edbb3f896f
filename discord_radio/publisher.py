from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

import requests
from mutagen.easyid3 import EasyID3
from mutagen.id3 import ID3NoHeaderError

from .discord_client import FORUM_CHANNEL_TYPE
from .models import Episode


logger = logging.getLogger(__name__)

FORUM_THREAD_NAME_LIMIT = 100


class Publisher(Protocol):
    def publish(self, episode: Episode) -> None: ...


def tag_episode(path: str, title: str, artist: str = "", date_str: str = "") -> None:
    """Write ID3 title/artist/date tags onto an MP3 episode."""
    try:
        tags = EasyID3(path)
    except ID3NoHeaderError:
        tags = EasyID3()
        tags.save(path)
        tags = EasyID3(path)
    tags["title"] = title
    if artist:
        tags["artist"] = artist
    if date_str:
        tags["date"] = date_str
    tags.save(v2_version=3)


class DiscordPublisher:
    """Posts a finished episode to a text channel or as a new forum thread."""

    def __init__(
        self,
        token: str,
        channel_id: str,
        api_base: str = "https://discord.com/api/v10",
        forum_tag_ids: Sequence[str] = (),
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel_id = channel_id
        self.api_base = api_base.rstrip("/")
        self.forum_tag_ids = list(forum_tag_ids)
        self.timeout = timeout
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bot {token}"})

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        while True:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
            if resp.status_code == 429:
                try:
                    wait = float(resp.headers.get("retry-after") or 1)
                except ValueError:
                    wait = 1.0
                logger.warning("Discord rate limited on upload", extra={"path": path, "retry_after": wait})
                self._sleep(wait)
                continue
            if not resp.ok:
                raise RuntimeError(f"Discord upload error {resp.status_code} on {path}: {resp.text[:300]}")
            return resp.json()

    def channel_type(self) -> Optional[int]:
        try:
            return self._request("GET", f"/channels/{self.channel_id}").get("type")
        except (requests.RequestException, RuntimeError) as e:
            logger.warning("Could not read posting channel", extra={"channel_id": self.channel_id, "error": str(e)})
            return None

    def _upload(self, path: str, payload: Dict[str, Any], filename: str, file_path: str) -> Dict[str, Any]:
        with open(file_path, "rb") as f:
            files = {"files[0]": (filename, f.read())}
        return self._request("POST", path, data={"payload_json": json.dumps(payload)}, files=files)

    def post_message(self, file_path: str, content: str) -> Dict[str, Any]:
        payload = {"content": content, "allowed_mentions": {"parse": []}}
        return self._upload(
            f"/channels/{self.channel_id}/messages", payload, os.path.basename(file_path), file_path
        )

    def post_forum_thread(self, file_path: str, name: str, content: str) -> Dict[str, Any]:
        filename = os.path.basename(file_path)
        payload: Dict[str, Any] = {
            "name": (name or filename)[:FORUM_THREAD_NAME_LIMIT],
            "message": {
                "content": content,
                "allowed_mentions": {"parse": []},
                "attachments": [{"id": 0, "filename": filename}],
            },
        }
        if self.forum_tag_ids:
            payload["applied_tags"] = self.forum_tag_ids
        return self._upload(f"/channels/{self.channel_id}/threads", payload, filename, file_path)

    def publish(self, episode: Episode) -> None:
        caption = f"Today's auto radio ({episode.label})"
        if self.channel_type() == FORUM_CHANNEL_TYPE:
            self.post_forum_thread(episode.path, episode.title or caption, caption)
            logger.info("Posted audio as forum thread", extra={"channel_id": self.channel_id})
        else:
            content = f"[{episode.title}] {caption}" if episode.title else caption
            self.post_message(episode.path, content)
            logger.info("Posted audio to text channel", extra={"channel_id": self.channel_id})
