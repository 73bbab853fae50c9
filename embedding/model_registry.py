"""Process-wide embedder so indexing and retrieval share one client or loaded model."""

from typing import Optional

from core.config import settings

_EMBEDDER: Optional[object] = None


def get_embedder():
    """Return the shared embedder for the configured backend. Created once per process."""
    global _EMBEDDER
    if _EMBEDDER is None:
        backend = settings.embedding_backend.strip().lower()
        if backend == "modernbert":
            from embedding.modernbert import ModernBERTEmbedder

            _EMBEDDER = ModernBERTEmbedder()
        elif backend == "openai":
            from embedding.openai_embedder import OpenAIEmbedder

            _EMBEDDER = OpenAIEmbedder()
        else:
            raise ValueError(f"Unknown EMBEDDING_BACKEND: {settings.embedding_backend}")
    return _EMBEDDER


def _reset_for_testing() -> None:
    global _EMBEDDER
    _EMBEDDER = None
