"""Grounded prompt assembly under a context-window budget.

Provides:
- estimate_tokens: characters/4 token estimate
- build_prompt: system instruction + labeled source blocks + recent conversation +
  the user message, truncated deterministically to fit the session context window

Truncation policy:
- The system instruction and the user message are always kept whole.
- Sources are added in rank order; the first one that does not fit is dropped along
  with every lower-ranked source.
- Remaining budget goes to prior turns, newest first; older turns that do not fit are
  dropped.
"""
import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from rag_pipeline.schemas import Source

CHARS_PER_TOKEN = 4

SYSTEM_PROMPT = (
    "You are a helpful assistant answering questions about the documents in a knowledge collection. "
    "Use ONLY the provided context sources and the conversation so far. If the answer is not clearly "
    "supported by the sources, say you don't know. Be factual and concise. "
    "Refer to sources by their label, e.g. [Source 1], when you rely on them."
)


def estimate_tokens(text: str) -> int:
    """Rough token count used for context budgeting."""
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


@dataclass
class PromptPlan:
    system: str
    prompt: str
    sources: List[Source] = field(default_factory=list)  # sources that made it into the prompt
    history_messages: int = 0
    estimated_tokens: int = 0


def _source_block(i: int, source: Source) -> str:
    title = source.title or "Untitled"
    return f"[Source {i}] {title}\n{source.content}"


def _turn_line(role: str, content: str) -> str:
    return f"{'User' if role == 'user' else 'Assistant'}: {content}"


def build_prompt(
    question: str,
    sources: Sequence[Source],
    history: Sequence[Tuple[str, str]],
    context_window: int,
    system: str = SYSTEM_PROMPT,
) -> PromptPlan:
    """Assemble the grounded prompt for one chat turn.

    Args:
        question: The user message for this turn.
        sources: Retrieved sources, highest similarity first.
        history: Prior (role, content) turns of the session, oldest first.
        context_window: Token budget for the whole prompt.
        system: System instruction.

    Returns:
        PromptPlan: The prompt text plus which sources and how many history messages were included.
    """
    question_part = f"Question:\n{question}"
    remaining = context_window - estimate_tokens(system) - estimate_tokens(question_part)

    kept_sources: List[Source] = []
    source_blocks: List[str] = []
    for source in sources:
        block = _source_block(len(kept_sources) + 1, source)
        cost = estimate_tokens(block)
        if cost > remaining:
            break
        kept_sources.append(source)
        source_blocks.append(block)
        remaining -= cost

    kept_turns: List[str] = []
    for role, content in reversed(list(history)):
        line = _turn_line(role, content)
        cost = estimate_tokens(line)
        if cost > remaining:
            break
        kept_turns.append(line)
        remaining -= cost
    kept_turns.reverse()

    parts: List[str] = []
    if source_blocks:
        parts.append("Context sources (use these only):\n" + "\n\n".join(source_blocks))
    else:
        parts.append("Context sources: (none found)")
    if kept_turns:
        parts.append("Conversation so far:\n" + "\n".join(kept_turns))
    parts.append(question_part)
    prompt = "\n\n".join(parts)

    return PromptPlan(
        system=system,
        prompt=prompt,
        sources=kept_sources,
        history_messages=len(kept_turns),
        estimated_tokens=estimate_tokens(system) + estimate_tokens(prompt),
    )
