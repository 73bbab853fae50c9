import logging
from typing import List, Optional

from openai import OpenAI

from core.config import settings
from core.errors import EmbeddingDimensionError, IndexingError

logger = logging.getLogger(__name__)


class OpenAIEmbedder:
    def __init__(self, client: Optional[OpenAI] = None) -> None:
        if client is None:
            if not settings.openai_api_key:
                raise IndexingError(
                    "OPENAI_API_KEY is required to generate plan text embeddings."
                )
            client = OpenAI(api_key=settings.openai_api_key)
        self._client = client
        self.model = settings.embedding_model
        self.dim = settings.embedding_dim

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed in fixed-size batches; any vector of the wrong size aborts the run."""
        batch_size = max(1, settings.embedding_batch_size)
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = [
                text[: settings.max_chunk_char_length]
                for text in texts[start : start + batch_size]
            ]
            response = self._client.embeddings.create(
                model=self.model,
                input=batch,
                encoding_format="float",
            )
            data = sorted(response.data, key=lambda entry: entry.index)
            if len(data) != len(batch):
                raise IndexingError(
                    f"Embedding response returned {len(data)} vectors for {len(batch)} inputs."
                )
            for entry in data:
                vector = list(entry.embedding or [])
                if len(vector) != self.dim:
                    raise EmbeddingDimensionError(self.dim, len(vector))
                embeddings.append(vector)
            logger.info(
                "Embedded batch %d-%d of %d with %s",
                start + 1,
                start + len(batch),
                len(texts),
                self.model,
            )
        return embeddings

    def embed_text(self, text: str) -> List[float]:
        return self.embed_texts([text])[0]
