"""Tests for context grouping, prompt assembly, and answer synthesis."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from lorekeeper.db.models import ContentUnit, ScoredUnit, SourceKind
from lorekeeper.errors import ProviderError
from lorekeeper.rag.assembler import (
    EMPTY_COMPLETION_ANSWER,
    NO_RESULTS_ANSWER,
    SYSTEM_PROMPT,
    AnswerSynthesizer,
    AssemblerConfig,
    ContextGroup,
    group_units,
)

T0 = datetime(2024, 12, 15, 15, 45, tzinfo=timezone.utc)


def _chat(ts: str, content: str, author: str = "Ada", thread: str = "1000.0") -> ContentUnit:
    return ContentUnit(
        id=f"conversation:C1:{ts}",
        source=SourceKind.CONVERSATION,
        source_id=ts,
        scope_id="C1",
        thread_id=thread,
        content=content,
        author_name=author,
        occurred_at=datetime.fromtimestamp(float(ts), tz=timezone.utc),
    )


def _post(post_id: str, title: str, content: str, minutes: int = 0) -> ContentUnit:
    return ContentUnit(
        id=f"wiki:post:{post_id}",
        source=SourceKind.WIKI,
        source_id=post_id,
        scope_id="post",
        title=title,
        content=content,
        author_name="Grace",
        occurred_at=T0 + timedelta(minutes=minutes),
    )


def _comment(comment_id: str, post_id: str, content: str, minutes: int = 0) -> ContentUnit:
    return ContentUnit(
        id=f"wiki:comment:{comment_id}",
        source=SourceKind.WIKI,
        source_id=comment_id,
        scope_id="comment",
        parent_id=post_id,
        content=content,
        author_name="Linus",
        occurred_at=T0 + timedelta(minutes=minutes),
    )


@pytest.fixture(autouse=True)
def fixed_token_count():
    """Count one token per four characters without touching tokenizer files."""
    with patch(
        "lorekeeper.rag.assembler.count_tokens", side_effect=lambda model, text: len(text) // 4
    ) as mock_count:
        yield mock_count


# ------------------------------------------------------------------
# group_units
# ------------------------------------------------------------------


def test_group_units_by_thread_in_time_order():
    groups = group_units([
        _chat("1002.0", "Third"),
        _chat("1000.0", "First"),
        _chat("1001.0", "Second"),
    ])
    assert len(groups) == 1
    assert groups[0].key == "conversation:C1:1000.0"
    assert [u.content for u in groups[0].units] == ["First", "Second", "Third"]


def test_group_units_keeps_first_appearance_order():
    groups = group_units([
        _post("42", "Guide", "Guide body"),
        _chat("1000.0", "Thread message"),
        _post("7", "Other", "Other body"),
    ])
    assert [g.key for g in groups] == ["wiki:post:42", "conversation:C1:1000.0", "wiki:post:7"]


def test_comments_grouped_with_their_post():
    groups = group_units([
        _comment("9", "42", "A comment", minutes=5),
        _post("42", "Guide", "Guide body"),
    ])
    assert len(groups) == 1
    assert [u.id for u in groups[0].units] == ["wiki:post:42", "wiki:comment:9"]
    assert groups[0].title == "Guide"


def test_group_units_drops_duplicates():
    unit = _chat("1000.0", "Only once")
    groups = group_units([unit, unit])
    assert len(groups[0].units) == 1


# ------------------------------------------------------------------
# ContextGroup.render
# ------------------------------------------------------------------


def test_render_thread_block():
    group = ContextGroup(
        key="conversation:C1:1000.0",
        kind=SourceKind.CONVERSATION,
        units=[_chat("1000.0", "How do we deploy?"), _chat("1001.0", "Use the script.", "Bob")],
    )
    assert group.render(1) == (
        "[1] Thread conversation:\n"
        "  Ada: How do we deploy?\n"
        "  Bob: Use the script."
    )


def test_render_wiki_block_with_title():
    group = ContextGroup(key="wiki:post:42", kind=SourceKind.WIKI, units=[_post("42", "Guide", "Body")])
    assert group.render(3) == "[3] Wiki document: Guide\n  Grace: Body"


# ------------------------------------------------------------------
# synthesize
# ------------------------------------------------------------------


def test_synthesize_no_units_skips_provider(generator):
    synthesizer = AnswerSynthesizer(generator)
    assert synthesizer.synthesize("anything?", []) == NO_RESULTS_ANSWER
    assert generator.prompts == []


def test_synthesize_builds_numbered_prompt(generator):
    synthesizer = AnswerSynthesizer(generator)
    units = [
        ScoredUnit(_chat("1000.0", "How do we deploy?"), 0.9),
        ScoredUnit(_post("42", "Guide", "Deploy from main."), 0.8),
    ]

    answer = synthesizer.synthesize("How do deploys work?", units)

    assert answer == "An answer [1]."
    [(system, user)] = generator.prompts
    assert system == SYSTEM_PROMPT
    assert "[1] Thread conversation:\n  Ada: How do we deploy?" in user
    assert "[2] Wiki document: Guide\n  Grace: Deploy from main." in user
    assert user.rstrip().endswith("Question: How do deploys work?")


def test_synthesize_accepts_plain_units(generator):
    answer = AnswerSynthesizer(generator).synthesize("q", [_post("42", "Guide", "Body text")])
    assert answer == "An answer [1]."


@pytest.mark.parametrize("reply", [None, "", "   "])
def test_synthesize_empty_completion(generator, reply):
    generator.answer = reply
    answer = AnswerSynthesizer(generator).synthesize("q", [_post("42", "Guide", "Body text")])
    assert answer == EMPTY_COMPLETION_ANSWER


def test_synthesize_returns_answer_verbatim(generator):
    generator.answer = "  Use the ops script [1].\n"
    answer = AnswerSynthesizer(generator).synthesize("q", [_post("42", "Guide", "Body text")])
    assert answer == "  Use the ops script [1].\n"


def test_prompts_name_both_sources(generator):
    AnswerSynthesizer(generator).synthesize("q", [_post("42", "Guide", "Body text")])

    [(system, user)] = generator.prompts
    for prompt in (system, user):
        assert "Slack" not in prompt
        assert "wiki" in prompt
        assert "chat" in prompt


def test_synthesize_propagates_provider_error(generator):
    generator.complete = MagicMock(side_effect=ProviderError("down"))
    with pytest.raises(ProviderError):
        AnswerSynthesizer(generator).synthesize("q", [_post("42", "Guide", "Body text")])


# ------------------------------------------------------------------
# Token budget
# ------------------------------------------------------------------


def test_build_context_stops_at_budget(generator):
    groups = group_units([_post(str(i), f"Doc {i}", "x" * 200) for i in range(5)])
    # Each block is ~60 tokens at 4 chars per token.
    synthesizer = AnswerSynthesizer(generator, AssemblerConfig(token_budget=130))

    context = synthesizer.build_context(groups)

    assert "[1] Wiki document: Doc 0" in context
    assert "[2] Wiki document: Doc 1" in context
    assert "[3]" not in context


def test_build_context_truncates_oversized_first_group(generator):
    groups = group_units([_post("1", "Huge", "y" * 4000)])
    synthesizer = AnswerSynthesizer(generator, AssemblerConfig(token_budget=100))

    context = synthesizer.build_context(groups)

    assert context.startswith("[1] Wiki document: Huge")
    assert len(context) == 400


def test_build_context_keeps_whole_groups(generator):
    groups = group_units([
        _chat("1000.0", "a" * 100),
        _chat("1001.0", "b" * 100),
        _post("42", "Guide", "c" * 400),
    ])
    synthesizer = AnswerSynthesizer(generator, AssemblerConfig(token_budget=80))

    context = synthesizer.build_context(groups)

    assert "a" * 100 in context and "b" * 100 in context
    assert "Guide" not in context
