import logging
from dataclasses import dataclass
from typing import List

import torch
from transformers import AutoModel, AutoTokenizer

from core.config import settings
from core.errors import EmbeddingDimensionError

logger = logging.getLogger(__name__)


@dataclass
class TokenizedText:
    input_ids: torch.Tensor
    attention_mask: torch.Tensor


class ModernBERTEmbedder:
    """Local mean-pooled encoder; the table's vector size must match EMBEDDING_DIM."""

    def __init__(self, max_length: int = 8192) -> None:
        self.device = torch.device("cpu")
        self.max_length = max_length
        self.model_name = settings.local_embedding_model
        self.dim = settings.embedding_dim
        self.tokenizer = AutoTokenizer.from_pretrained(
            self.model_name, trust_remote_code=True
        )
        self.model = AutoModel.from_pretrained(self.model_name, trust_remote_code=True)
        self.model.to(self.device)
        self.model.eval()

    def tokenize(self, text: str) -> TokenizedText:
        encoded = self.tokenizer(
            text,
            return_tensors="pt",
            truncation=True,
            max_length=self.max_length,
        )
        return TokenizedText(
            input_ids=encoded["input_ids"].to(self.device),
            attention_mask=encoded["attention_mask"].to(self.device),
        )

    def encode(self, tokenized: TokenizedText) -> torch.Tensor:
        with torch.no_grad():
            output = self.model(
                input_ids=tokenized.input_ids,
                attention_mask=tokenized.attention_mask,
            )
        return output.last_hidden_state.squeeze(0)

    def embed_text(self, text: str) -> List[float]:
        tokenized = self.tokenize(text[: settings.max_chunk_char_length])
        embeddings = self.encode(tokenized)
        mask = tokenized.attention_mask.squeeze(0).unsqueeze(-1)
        pooled = (embeddings * mask).sum(dim=0) / mask.sum()
        vector = pooled.cpu().numpy().astype("float32").tolist()
        if len(vector) != self.dim:
            raise EmbeddingDimensionError(self.dim, len(vector))
        return vector

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        vectors = [self.embed_text(text) for text in texts]
        logger.info("Embedded %d texts locally with %s", len(texts), self.model_name)
        return vectors
