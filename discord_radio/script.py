from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from openai import OpenAI

from .config import ScriptConfig, WindowConfig
from .models import ChannelMaterial, DialogueTurn, NarrationUnit, Speaker, TimeWindow
from .window import format_local, window_label


logger = logging.getLogger(__name__)

HEURISTIC_SNIPPETS = 20
HEURISTIC_SNIPPET_CHARS = 200
HEURISTIC_SUMMARY_CHARS = 240
AI_SNIPPETS = 30
AI_SNIPPET_CHARS = 300
AI_SUMMARY_CHARS = 800

NARRATOR_SYSTEM_PROMPT = (
    "You are the narrator of a daily community radio show.\n"
    "Write a calm spoken monologue built mainly from the Discord conversation excerpts; "
    "use the article summaries only as supporting material.\n"
    "Explain jargon plainly, avoid filler, and aim for 5 to 9 minutes of speech.\n"
    "Structure: opening, the main points following the flow of the conversation, closing.\n"
    "Never read out URLs or sources. Output the script only, without headings."
)

DIALOGUE_SYSTEM_PROMPT = (
    "You write the script of a daily community radio show with two hosts.\n"
    "Host A leads and introduces each topic; host B reacts, asks questions and adds context.\n"
    "Build the conversation mainly from the Discord excerpts; use the article summaries "
    "only as supporting material.\n"
    "Explain jargon plainly, avoid filler, and aim for 5 to 9 minutes of speech.\n"
    "Start every line with the speaker label 'A:' or 'B:' and put one turn per line.\n"
    "Never read out URLs or sources. Output the script only, without headings."
)

TITLE_SYSTEM_PROMPT = (
    "You write short, concrete headlines for a daily news digest. "
    "Return one title of at most 60 characters, without quotes or decoration."
)


class ScriptBuilder(Protocol):
    def build(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> NarrationUnit: ...

    def title(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> str: ...


def _snippets(materials: Iterable[ChannelMaterial], limit: int, chars: int) -> List[str]:
    out: List[str] = []
    for material in materials:
        for text in material.texts:
            s = re.sub(r"\s+", " ", text or "").strip()
            if s:
                out.append(s[:chars])
    return out[:limit]


def _topics(materials: Iterable[ChannelMaterial], chars: int) -> List[Tuple[str, str, str]]:
    out: List[Tuple[str, str, str]] = []
    for material in materials:
        for art in material.articles:
            summary = re.sub(r"\s+", " ", art.text[:chars]) if art.text else ""
            out.append((art.title or "Untitled article", art.url, summary))
    return out


class HeuristicScriptBuilder:
    """Fixed-template script; needs no external service.

    In ``dialogue`` mode every line carries an ``A:``/``B:`` label: A hosts
    and reads the headlines, B relays the conversation and the summaries.
    """

    def __init__(self, window_cfg: Optional[WindowConfig] = None, mode: str = "monologue") -> None:
        self.window_cfg = window_cfg or WindowConfig()
        self.mode = mode

    def _label(self, window: TimeWindow) -> str:
        return window_label(window, self.window_cfg.utc_offset_hours, self.window_cfg.zone_label)

    def _lines(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> List[Tuple[Speaker, str]]:
        snippets = _snippets(materials, HEURISTIC_SNIPPETS, HEURISTIC_SNIPPET_CHARS)
        topics = _topics(materials, HEURISTIC_SUMMARY_CHARS)
        quote = "Someone wrote: " if self.mode == "dialogue" else "- "
        a, b = Speaker.A, Speaker.B

        lines = [
            (a, f"Hello. This broadcast rounds up what was shared between {self._label(window).replace(' -> ', ' and ')}.")
        ]
        if not snippets and not topics:
            lines.append((b, "Nothing new was shared in this period, so today's show is a short one."))
            lines.append((a, "Take the chance to revisit a few bookmarks you saved earlier, and we will be back tomorrow."))
        else:
            lines.append((a, "Let's start with the highlights from the conversation."))
            lines.extend((b, f"{quote}{s}") for s in snippets)
            if topics:
                lines.append((a, "And a quick look at the shared articles."))
                for idx, (title, _url, summary) in enumerate(topics, start=1):
                    lines.append((a, f"{idx}. {title}"))
                    if summary:
                        lines.append((b, f"Summary: {summary}"))
        lines.append((b, "That's the digest of today's notable topics."))
        lines.append((a, "We hope it helps you keep up. Have a great day."))
        return lines

    def build(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> NarrationUnit:
        lines = self._lines(materials, window)
        if self.mode == "dialogue":
            return "\n".join(f"{speaker.value}: {text}" for speaker, text in lines)
        return "\n".join(text for _speaker, text in lines)

    def title(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> str:
        topics = _topics(materials, 0)
        if topics:
            return topics[0][0]
        phrases = _snippets(materials, 1, 40)
        if phrases:
            return phrases[0]
        return default_title(window, self.window_cfg)


def default_title(window: TimeWindow, window_cfg: WindowConfig) -> str:
    day = format_local(window.start, window_cfg.utc_offset_hours, window_cfg.zone_label)[:10]
    return f"Daily digest {day}"


class OpenAIScriptBuilder:
    """Generative script; falls back to the template on any failure."""

    def __init__(
        self,
        cfg: ScriptConfig,
        window_cfg: Optional[WindowConfig] = None,
        client: Optional[OpenAI] = None,
        mode: str = "monologue",
    ) -> None:
        self.cfg = cfg
        self.window_cfg = window_cfg or WindowConfig()
        self.mode = mode
        self.fallback = HeuristicScriptBuilder(self.window_cfg, mode=mode)
        if client is None and cfg.api_key:
            client = OpenAI(api_key=cfg.api_key)
        self._client = client

    def _complete(self, system: str, user: str, temperature: float, max_tokens: int) -> Optional[str]:
        if self._client is None:
            return None
        resp = self._client.chat.completions.create(
            model=self.cfg.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        out = resp.choices[0].message.content if resp and resp.choices else None
        return out.strip() if out else None

    def build(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> NarrationUnit:
        snippets = _snippets(materials, AI_SNIPPETS, AI_SNIPPET_CHARS)
        topics = _topics(materials, AI_SUMMARY_CHARS)
        chats = (
            "Discord excerpts:\n" + "\n".join(f"- {s}" for s in snippets)
            if snippets
            else "Discord excerpts: none"
        )
        refs = (
            "Reference articles:\n" + "\n".join(f"- {t}\n  Summary: {s}" for t, _u, s in topics)
            if topics
            else "Reference articles: none"
        )
        label = window_label(window, self.window_cfg.utc_offset_hours, self.window_cfg.zone_label)
        user = f"Period: {label}\n\n{chats}\n\n{refs}"
        dialogue = self.mode == "dialogue"
        system = DIALOGUE_SYSTEM_PROMPT if dialogue else NARRATOR_SYSTEM_PROMPT
        try:
            script = self._complete(system, user, self.cfg.temperature, self.cfg.max_tokens)
            if script and dialogue and not has_speaker_labels(script):
                logger.warning("OpenAI dialogue has no speaker labels; using template")
            elif script:
                return script
        except Exception as e:  # noqa: BLE001
            logger.warning("OpenAI script generation failed; using template", extra={"error": str(e)})
        return self.fallback.build(materials, window)

    def title(self, materials: Sequence[ChannelMaterial], window: TimeWindow) -> str:
        fallback = self.fallback.title(materials, window)
        topics = [t for t, _u, _s in _topics(materials, 0)][:6]
        phrases = _snippets(materials, 10, 40)
        parts = []
        if topics:
            parts.append("Article topics: " + " / ".join(topics))
        if phrases:
            parts.append("Conversation keywords: " + " / ".join(phrases))
        label = window_label(window, self.window_cfg.utc_offset_hours, self.window_cfg.zone_label)
        parts.append(f"Period: {label}")
        try:
            return self._complete(TITLE_SYSTEM_PROMPT, "\n".join(parts), 0.6, 64) or fallback
        except Exception as e:  # noqa: BLE001
            logger.warning("OpenAI title generation failed", extra={"error": str(e)})
            return default_title(window, self.window_cfg)


def build_script_builder(cfg: ScriptConfig, window_cfg: WindowConfig, mode: str = "monologue") -> ScriptBuilder:
    if cfg.provider == "openai" and cfg.api_key:
        return OpenAIScriptBuilder(cfg, window_cfg, mode=mode)
    return HeuristicScriptBuilder(window_cfg, mode=mode)


# "A: ...", "B：...", "HostA: ...", "GuestB: ...", "司会A: ...", "相棒B: ..."
_LABELED = re.compile(r"^((?:司会|host)?A|(?:相棒|guest)?B)\s*[:：]\s*(.*)$", re.IGNORECASE)


def has_speaker_labels(script: str) -> bool:
    return any(_LABELED.match(line.strip()) for line in (script or "").splitlines())


def _alternate(last: Speaker) -> Speaker:
    return Speaker.B if last is Speaker.A else Speaker.A


def _label_of(line: str) -> Tuple[Optional[Speaker], str]:
    m = _LABELED.match(line)
    if m:
        return (Speaker.B if m.group(1)[-1].upper() == "B" else Speaker.A), m.group(2).strip()
    return None, line


def parse_dialogue(script: str, default: Speaker = Speaker.A) -> List[DialogueTurn]:
    """Split a labeled two-speaker script into turns.

    The only state is the last speaker. A labeled line sets it; an unlabeled
    line goes to the other speaker (``_alternate``) and sets it too. Before
    any line the last speaker is ``default``.
    """
    turns: List[DialogueTurn] = []
    last = default
    for raw in (script or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        speaker, text = _label_of(line)
        if speaker is None:
            speaker = _alternate(last)
        last = speaker
        if text:
            turns.append(DialogueTurn(speaker=speaker, text=text))
    return turns
