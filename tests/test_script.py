"""Tests for script building and dialogue parsing."""

from unittest.mock import MagicMock

from discord_radio.config import ScriptConfig, WindowConfig
from discord_radio.models import Article, ChannelMaterial, DialogueTurn, Speaker
from discord_radio.script import (
    DIALOGUE_SYSTEM_PROMPT,
    HeuristicScriptBuilder,
    OpenAIScriptBuilder,
    build_script_builder,
    default_title,
    has_speaker_labels,
    parse_dialogue,
)


def _material():
    return ChannelMaterial(
        channel_id="c1",
        urls=["https://news.test/a"],
        articles=[Article(url="https://news.test/a", title="Rust 2.0 released", text="A   big\nrelease.")],
        texts=["Has anyone tried the new release?", "  "],
    )


def _completion(content):
    resp = MagicMock()
    choice = MagicMock()
    choice.message.content = content
    resp.choices = [choice]
    return resp


# --- Dialogue parsing ---

def test_parse_dialogue_unlabeled_line_alternates():
    """An unlabeled line after A goes to B."""
    turns = parse_dialogue("A: hello\nworld\nB: done")
    assert turns == [
        DialogueTurn(Speaker.A, "hello"),
        DialogueTurn(Speaker.B, "world"),
        DialogueTurn(Speaker.B, "done"),
    ]


def test_parse_dialogue_label_variants():
    """Full-width colons and Host/Guest prefixes are labels."""
    turns = parse_dialogue("HostA: hi\nguestB： welcome\nb: thanks")
    assert [t.speaker for t in turns] == [Speaker.A, Speaker.B, Speaker.B]
    assert [t.text for t in turns] == ["hi", "welcome", "thanks"]


def test_parse_dialogue_japanese_host_labels():
    """司会A and 相棒B label the host and the partner."""
    turns = parse_dialogue("司会A: こんにちは\n相棒B：どうも\n司会A: では")
    assert [t.speaker for t in turns] == [Speaker.A, Speaker.B, Speaker.A]
    assert [t.text for t in turns] == ["こんにちは", "どうも", "では"]


def test_parse_dialogue_starts_from_default():
    """With no label yet, the first line goes to the other of the default."""
    turns = parse_dialogue("intro line\nsecond line")
    assert [t.speaker for t in turns] == [Speaker.B, Speaker.A]


def test_parse_dialogue_sentence_starting_with_a_is_not_a_label():
    """'A quick note' is prose, not speaker A."""
    turns = parse_dialogue("B: first\nA quick note")
    assert turns[1] == DialogueTurn(Speaker.A, "A quick note")


def test_parse_dialogue_skips_blank_and_empty_turns():
    """Blank lines and empty labeled lines produce no turns."""
    turns = parse_dialogue("\nA:\n\nB: only\n")
    assert turns == [DialogueTurn(Speaker.B, "only")]


# --- Heuristic builder ---

def test_heuristic_script_mentions_material(window):
    """The template quotes chat snippets and article titles."""
    script = HeuristicScriptBuilder().build([_material()], window)
    assert "Has anyone tried the new release?" in script
    assert "1. Rust 2.0 released" in script
    assert "Summary: A big release." in script
    assert "https://" not in script


def test_heuristic_script_empty_day(window):
    """An empty day still produces a short script."""
    script = HeuristicScriptBuilder().build([ChannelMaterial(channel_id="c1")], window)
    assert "Nothing new was shared" in script


def test_heuristic_dialogue_labels_every_line(window):
    """In dialogue mode each template line names its speaker."""
    script = HeuristicScriptBuilder(mode="dialogue").build([_material()], window)
    lines = script.splitlines()
    assert all(line.startswith(("A: ", "B: ")) for line in lines)
    assert "B: Someone wrote: Has anyone tried the new release?" in lines
    assert "A: 1. Rust 2.0 released" in lines
    assert "B: Summary: A big release." in lines


def test_heuristic_dialogue_turns_follow_labels(window):
    """Parsed turns take their speaker from the labels, never from position."""
    script = HeuristicScriptBuilder(mode="dialogue").build([_material()], window)
    turns = parse_dialogue(script)
    assert len(turns) == len(script.splitlines())
    assert [t.speaker for t in turns[:3]] == [Speaker.A, Speaker.A, Speaker.B]
    assert not any(t.text.startswith(("A:", "B:")) for t in turns)


def test_heuristic_title_chain(window):
    """Article title first, then chat text, then a dated default."""
    builder = HeuristicScriptBuilder()
    assert builder.title([_material()], window) == "Rust 2.0 released"
    chat_only = ChannelMaterial(channel_id="c1", texts=["Weekend plans for the meetup are set"])
    assert builder.title([chat_only], window) == "Weekend plans for the meetup are set"
    assert builder.title([], window) == "Daily digest 2024-01-02"


def test_default_title_uses_local_start_day(window):
    """The default title is dated by the window start in local time."""
    assert default_title(window, WindowConfig()) == "Daily digest 2024-01-02"


# --- OpenAI builder ---

def test_openai_builder_returns_completion(window):
    """The generated script is used when the call succeeds."""
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("  Good morning, listeners.  ")
    builder = OpenAIScriptBuilder(ScriptConfig(api_key="k"), client=client)
    assert builder.build([_material()], window) == "Good morning, listeners."
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert "Rust 2.0 released" in kwargs["messages"][1]["content"]


def test_openai_builder_falls_back_on_error(window):
    """API failures fall back to the template script."""
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("quota")
    builder = OpenAIScriptBuilder(ScriptConfig(api_key="k"), client=client)
    script = builder.build([_material()], window)
    assert "1. Rust 2.0 released" in script
    assert builder.title([_material()], window) == "Daily digest 2024-01-02"


def test_openai_title_falls_back_on_empty_completion(window):
    """An empty title completion uses the template title."""
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("")
    builder = OpenAIScriptBuilder(ScriptConfig(api_key="k"), client=client)
    assert builder.title([_material()], window) == "Rust 2.0 released"


def test_build_script_builder_without_key_is_heuristic():
    """No API key means the template builder."""
    builder = build_script_builder(ScriptConfig(api_key=""), WindowConfig())
    assert isinstance(builder, HeuristicScriptBuilder)


def test_build_script_builder_passes_mode():
    """The narration mode reaches both builders."""
    heuristic = build_script_builder(ScriptConfig(api_key=""), WindowConfig(), mode="dialogue")
    assert heuristic.mode == "dialogue"
    generative = build_script_builder(ScriptConfig(provider="openai", api_key="k"), WindowConfig(), mode="dialogue")
    assert isinstance(generative, OpenAIScriptBuilder)
    assert generative.mode == "dialogue"
    assert generative.fallback.mode == "dialogue"


def test_openai_dialogue_uses_labeled_prompt(window):
    """Dialogue mode asks for A:/B: lines and keeps a labeled completion."""
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("A: Morning.\nB: Morning!\nB: Big release today.")
    builder = OpenAIScriptBuilder(ScriptConfig(api_key="k"), client=client, mode="dialogue")
    script = builder.build([_material()], window)
    assert [t.speaker for t in parse_dialogue(script)] == [Speaker.A, Speaker.B, Speaker.B]
    system = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
    assert system == DIALOGUE_SYSTEM_PROMPT


def test_openai_dialogue_without_labels_uses_template(window):
    """An unlabeled completion in dialogue mode is replaced by the labeled template."""
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("Good morning.\nHere is the news.")
    builder = OpenAIScriptBuilder(ScriptConfig(api_key="k"), client=client, mode="dialogue")
    script = builder.build([_material()], window)
    assert has_speaker_labels(script)
    assert "A: 1. Rust 2.0 released" in script.splitlines()
