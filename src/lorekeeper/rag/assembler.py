"""Answer synthesis: group retrieved units, build a numbered context, ask the model.

Pipeline:
  1. Group units by conversation thread or wiki document, keeping the order
     in which groups first appear (best similarity first).
  2. Render each group as a numbered block the model can cite (``[1]``, ``[2]``).
  3. Apply a token budget: whole groups are added until the budget is spent.
  4. One completion call with the fixed system prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from lorekeeper.db.models import ContentUnit, ScoredUnit, SourceKind
from lorekeeper.ingest.normalizer import make_unit_id
from lorekeeper.rag.llm_client import TextGenerationProvider, count_tokens

_log = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "I couldn't find any relevant information to answer your question."
EMPTY_COMPLETION_ANSWER = "I couldn't generate a response. Please try again."

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on internal company "
    "knowledge from chat conversations and wiki documents. Be concise and cite the "
    "relevant sources by their numbers when possible."
)

_USER_PROMPT = """\
Based on the following context from our internal knowledge base (chat threads and \
wiki documents), please answer the question. Be concise and cite the relevant \
sources by their numbers.

Context:
{context}

Question: {query}"""


@dataclass
class AssemblerConfig:
    model: str = "openai/gpt-4o-mini"   # used for token counting only
    token_budget: int = 8_192           # max tokens for assembled context


@dataclass
class ContextGroup:
    key: str
    kind: SourceKind
    units: list[ContentUnit] = field(default_factory=list)

    @property
    def title(self) -> str | None:
        return next((u.title for u in self.units if u.title), None)

    def render(self, number: int) -> str:
        if self.kind is SourceKind.WIKI:
            header = f"[{number}] Wiki document: {self.title}" if self.title else f"[{number}] Wiki document:"
        else:
            header = f"[{number}] Thread conversation:"
        lines = [header]
        for unit in self.units:
            lines.append(f"  {unit.author_name or unit.author_id or 'unknown'}: {unit.content}")
        return "\n".join(lines)


def group_units(units: Sequence[ContentUnit]) -> list[ContextGroup]:
    """Group *units* by thread (conversation) or by post (wiki).

    Groups keep first-appearance order; members are sorted by ``occurred_at``.
    """
    groups: dict[str, ContextGroup] = {}
    for unit in units:
        key = _group_key(unit)
        if key not in groups:
            groups[key] = ContextGroup(key=key, kind=SourceKind(unit.source))
        if all(u.id != unit.id for u in groups[key].units):
            groups[key].units.append(unit)

    for group in groups.values():
        group.units.sort(key=_chronological)
    return list(groups.values())


def _chronological(unit: ContentUnit) -> tuple[bool, float, str]:
    stamp = unit.occurred_at.timestamp() if unit.occurred_at else 0.0
    return (unit.occurred_at is None, stamp, unit.source_id)


def _group_key(unit: ContentUnit) -> str:
    if unit.group_id is not None:
        return unit.group_id
    if unit.source == SourceKind.WIKI and unit.parent_id:
        return make_unit_id(SourceKind.WIKI, "post", unit.parent_id)
    return unit.id


class AnswerSynthesizer:
    """Turn retrieved units into a single grounded answer.

    Args:
        generator: Text-generation provider.
        config: Token budget settings.
        logger: Logger for prompt-size diagnostics.
    """

    def __init__(
        self,
        generator: TextGenerationProvider,
        config: AssemblerConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._generator = generator
        self.config = config or AssemblerConfig()
        self._log = logger or _log

    def synthesize(self, query: str, units: Sequence[ScoredUnit | ContentUnit]) -> str:
        """Answer *query* from *units*; returns a sentinel answer when there is nothing to use.

        Raises:
            ProviderError: If the completion call fails.
        """
        plain = [u.unit if isinstance(u, ScoredUnit) else u for u in units]
        if not plain:
            return NO_RESULTS_ANSWER

        context = self.build_context(group_units(plain))
        user_prompt = _USER_PROMPT.format(context=context, query=query)
        answer = self._generator.complete(SYSTEM_PROMPT, user_prompt)
        if not answer or not answer.strip():
            return EMPTY_COMPLETION_ANSWER
        return answer

    def build_context(self, groups: list[ContextGroup]) -> str:
        """Render numbered group blocks that fit within the token budget."""
        blocks: list[str] = []
        total = 0
        for group in groups:
            block = group.render(len(blocks) + 1)
            tokens = count_tokens(self.config.model, block)
            if blocks and total + tokens > self.config.token_budget:
                self._log.debug(
                    "Token budget reached: %d of %d group(s) used", len(blocks), len(groups)
                )
                break
            if not blocks and tokens > self.config.token_budget:
                block = block[: self.config.token_budget * 4]
            blocks.append(block)
            total += tokens
        return "\n".join(blocks)
