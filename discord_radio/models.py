from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from dateutil import parser as dateparser


@dataclass(frozen=True)
class TimeWindow:
    start: dt.datetime
    end: dt.datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"window start {self.start} is not before end {self.end}")

    def contains(self, ts: dt.datetime) -> bool:
        return self.start <= ts < self.end


@dataclass(frozen=True)
class RawMessage:
    id: str
    author_id: str
    author_name: str
    is_bot: bool
    type: int
    timestamp: dt.datetime
    content: str = ""
    attachment_urls: List[str] = field(default_factory=list)
    embed_urls: List[str] = field(default_factory=list)
    embed_texts: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RawMessage":
        author = payload.get("author") or {}
        attachments = payload.get("attachments") or []
        # Discord returns a list; tolerate a mapping of id -> attachment
        if isinstance(attachments, dict):
            attachments = list(attachments.values())
        embed_urls: List[str] = []
        embed_texts: List[str] = []
        for emb in payload.get("embeds") or []:
            if emb.get("url"):
                embed_urls.append(emb["url"])
            for key in ("title", "description"):
                if emb.get(key):
                    embed_texts.append(emb[key])
        return cls(
            id=str(payload["id"]),
            author_id=str(author.get("id", "")),
            author_name=author.get("username", ""),
            is_bot=bool(author.get("bot", False)),
            type=int(payload.get("type") or 0),
            timestamp=dateparser.isoparse(payload["timestamp"]),
            content=payload.get("content") or "",
            attachment_urls=[a["url"] for a in attachments if a and a.get("url")],
            embed_urls=embed_urls,
            embed_texts=embed_texts,
        )


@dataclass(frozen=True)
class ExtractedMessage:
    id: str
    author: str
    timestamp: dt.datetime
    content: str
    # Unique normalized URLs in order of first appearance
    urls: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Article:
    url: str
    title: Optional[str] = None
    text: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.title and not self.text


class Speaker(Enum):
    A = "A"
    B = "B"


@dataclass(frozen=True)
class DialogueTurn:
    speaker: Speaker
    text: str


# A monologue string or an ordered list of dialogue turns
NarrationUnit = Union[str, List[DialogueTurn]]


@dataclass(frozen=True)
class AudioSegment:
    ordinal: int
    data: bytes
    speaker: Optional[Speaker] = None


@dataclass(frozen=True)
class Episode:
    path: str
    title: str
    label: str
    window: TimeWindow


@dataclass
class ChannelMaterial:
    channel_id: str
    urls: List[str] = field(default_factory=list)
    articles: List[Article] = field(default_factory=list)
    texts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "urls": list(self.urls),
            "articles": [{"url": a.url, "title": a.title, "text": a.text} for a in self.articles],
            "texts": list(self.texts),
        }
