from dataclasses import dataclass, field
import os
from typing import List


def _get_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_list_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    data_dir: str = os.getenv("IDP_DATA_DIR", "data")

    embedding_backend: str = os.getenv("EMBEDDING_BACKEND", "openai")
    embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    local_embedding_model: str = os.getenv(
        "LOCAL_EMBEDDING_MODEL", "nomic-ai/modernbert-embed-base"
    )
    embedding_dim: int = int(os.getenv("EMBEDDING_DIM", "1536"))
    embedding_batch_size: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "20"))
    insert_batch_size: int = int(os.getenv("INSERT_BATCH_SIZE", "100"))

    tier1_timeout_s: float = float(os.getenv("TIER1_TIMEOUT_S", "180"))
    tier2_timeout_s: float = float(os.getenv("TIER2_TIMEOUT_S", "60"))
    ocr_timeout_s: float = float(os.getenv("OCR_TIMEOUT_S", "300"))
    min_chars_per_page: float = float(os.getenv("MIN_CHARS_PER_PAGE", "50"))
    min_absolute_chars: int = int(os.getenv("MIN_ABSOLUTE_CHARS", "0"))
    azure_di_endpoint: str = os.getenv("AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT", "")
    azure_di_key: str = os.getenv("AZURE_DOCUMENT_INTELLIGENCE_KEY", "")

    max_chunk_char_length: int = int(os.getenv("MAX_CHUNK_CHAR_LENGTH", "900"))
    min_chunk_char_length: int = int(os.getenv("MIN_CHUNK_CHAR_LENGTH", "250"))

    enable_vision_descriptions: bool = _get_bool_env("ENABLE_VISION_DESCRIPTIONS", False)
    vision_model: str = os.getenv("VISION_MODEL", "gpt-4o")
    vision_max_pages: int = int(os.getenv("VISION_MAX_PAGES", "20"))
    vision_batch_size: int = int(os.getenv("VISION_BATCH_SIZE", "3"))

    consensus_threshold: float = float(os.getenv("CONSENSUS_THRESHOLD", "0.3"))
    item_similarity_threshold: float = float(os.getenv("ITEM_SIMILARITY_THRESHOLD", "0.7"))
    issue_similarity_threshold: float = float(os.getenv("ISSUE_SIMILARITY_THRESHOLD", "0.75"))
    disagreement_deviation: float = float(os.getenv("DISAGREEMENT_DEVIATION", "0.5"))
    max_models_per_analysis: int = int(os.getenv("MAX_MODELS_PER_ANALYSIS", "5"))
    model_timeout_s: float = float(os.getenv("MODEL_TIMEOUT_S", "60"))

    probe_timeout_s: float = float(os.getenv("PROBE_TIMEOUT_S", "3"))
    degradation_ttl_s: float = float(os.getenv("DEGRADATION_TTL_S", "1800"))
    provider_priority: List[str] = field(
        default_factory=lambda: _get_list_env("PROVIDER_PRIORITY", "anthropic,openai,xai")
    )

    enable_openai: bool = _get_bool_env("ENABLE_OPENAI", True)
    enable_anthropic: bool = _get_bool_env("ENABLE_ANTHROPIC", True)
    enable_google: bool = _get_bool_env("ENABLE_GOOGLE", True)
    enable_xai: bool = _get_bool_env("ENABLE_XAI", True)
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    google_api_key: str = os.getenv("GOOGLE_GEMINI_API_KEY", "")
    xai_api_key: str = os.getenv("XAI_API_KEY", "")

    download_timeout_s: float = float(os.getenv("DOWNLOAD_TIMEOUT_S", "300"))
    max_pdf_bytes: int = int(os.getenv("MAX_PDF_BYTES", str(500 * 1024 * 1024)))
    download_retries: int = int(os.getenv("DOWNLOAD_RETRIES", "3"))

    def ocr_configured(self) -> bool:
        return bool(self.azure_di_endpoint and self.azure_di_key)

    def provider_enabled(self, provider: str) -> bool:
        """A provider is usable when its flag is on and its credential is present."""
        flags = {
            "openai": (self.enable_openai, self.openai_api_key),
            "anthropic": (self.enable_anthropic, self.anthropic_api_key),
            "google": (self.enable_google, self.google_api_key),
            "xai": (self.enable_xai, self.xai_api_key),
        }
        enabled, credential = flags.get(provider, (False, ""))
        return bool(enabled and credential)


settings = Settings()
