"""
nelson-memory: session memory and relevance retrieval for Nelson-GPT.

Decides which parts of a conversation are worth keeping, tags them, scores
them against a new query, and hands the most relevant slice back for the
next model call.
"""

from .context import CorpusExcerpt, MedicalContext, build_context, build_system_prompt
from .intelligence import KeywordExtractor, extract_age, extract_tags, infer_specialty
from .memory import MemoryManager
from .models import ConversationMemory, ConversationMessage, MemoryEntry, MemoryState
from .store import BlobStore, ChromaBlobStore, MemoryStore

__all__ = [
    "MemoryManager",
    "MemoryStore",
    "BlobStore",
    "ChromaBlobStore",
    "MemoryEntry",
    "MemoryState",
    "ConversationMemory",
    "ConversationMessage",
    "KeywordExtractor",
    "extract_age",
    "extract_tags",
    "infer_specialty",
    "CorpusExcerpt",
    "MedicalContext",
    "build_context",
    "build_system_prompt",
]
