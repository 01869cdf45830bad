"""
Context bundle handed to the model-call collaborator.

The memory core contributes ``memory_context`` (the output of
:meth:`MemoryManager.get_relevant_memories`); corpus excerpts and the
recent message window come from the host.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .memory import MemoryManager

SYSTEM_PREAMBLE = """\
You are Nelson-GPT, an advanced AI pediatric medical assistant based on Nelson Textbook of Pediatrics. \
You provide evidence-based medical information, diagnostic assistance, and treatment guidance for \
pediatric healthcare professionals.

CORE CAPABILITIES:
- Pediatric diagnosis and differential diagnosis
- Treatment recommendations based on current guidelines
- Drug dosing and safety information for children
- Medical decision support
- Educational content delivery

RESPONSE GUIDELINES:
- Always cite relevant Nelson Textbook sections when available
- Provide evidence-based recommendations
- Include differential diagnoses when appropriate
- Mention age-specific considerations
- Highlight critical safety information
- Use clear, professional medical language
- Include relevant dosing information when discussing medications

IMPORTANT LIMITATIONS:
- This is for educational and decision support only
- Always recommend clinical judgment and direct patient evaluation
- Do not replace professional medical judgment
- Emphasize the need for appropriate clinical context"""

CLOSING_INSTRUCTION = (
    "Provide a comprehensive, evidence-based response using the available information."
)


@dataclass(frozen=True)
class CorpusExcerpt:
    """A ranked excerpt returned by the corpus search collaborator."""

    content: str
    chapter: str | None = None
    section: str | None = None
    page: int | None = None

    def label(self) -> str:
        label = self.chapter or "Chapter Unknown"
        if self.section:
            label += f" - {self.section}"
        return f"[{label}]"


@dataclass
class MedicalContext:
    corpus_excerpts: list[CorpusExcerpt] = field(default_factory=list)
    memory_context: list[str] = field(default_factory=list)
    conversation_history: list[dict[str, str]] = field(default_factory=list)


def build_context(
    manager: MemoryManager,
    query: str,
    corpus_excerpts: Iterable[CorpusExcerpt] = (),
    recent_messages: Iterable[dict[str, str]] = (),
) -> MedicalContext:
    """Assemble the bundle for one model call about *query*."""
    return MedicalContext(
        corpus_excerpts=list(corpus_excerpts),
        memory_context=manager.get_relevant_memories(query),
        conversation_history=list(recent_messages),
    )


def build_system_prompt(context: MedicalContext | None = None) -> str:
    """
    Render the system prompt: preamble, numbered corpus excerpts, numbered
    memory snippets, closing instruction.  Empty sections are left out.
    """
    prompt = SYSTEM_PREAMBLE

    if context is not None and context.corpus_excerpts:
        prompt += "\n\nRELEVANT NELSON TEXTBOOK CONTENT:\n"
        for i, excerpt in enumerate(context.corpus_excerpts, 1):
            prompt += f"\n{i}. {excerpt.label()}: {excerpt.content}"

    if context is not None and context.memory_context:
        prompt += "\n\nRELEVANT CONVERSATION HISTORY:\n"
        for i, memory in enumerate(context.memory_context, 1):
            prompt += f"\n{i}. {memory}"

    prompt += f"\n\n{CLOSING_INSTRUCTION}"
    return prompt
