from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

TASK_TYPES = ("takeoff", "quality", "bid_analysis", "code_compliance", "cost_estimation")

CONTENT_EXTRACTED_TEXT = "extracted_text"
CONTENT_VISION_DESCRIPTION = "vision_description"


@dataclass(frozen=True)
class TextItem:
    text: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str
    source_text_items: List[TextItem] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionResult:
    method: str
    pages: List[PageText]
    warnings: List[str]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def total_chars(self) -> int:
        return sum(len(page.text) for page in self.pages)


@dataclass(frozen=True)
class TriageMetrics:
    text_length: int
    text_density: float
    image_coverage_ratio: float
    layout_complexity_score: float


@dataclass(frozen=True)
class TriageDecision:
    metrics: TriageMetrics
    decision: str
    reason_codes: List[str]


@dataclass(frozen=True)
class SheetMeta:
    page_number: int
    sheet_id: str
    title: Optional[str]
    discipline: str
    sheet_type: str
    scale: Optional[str] = None
    scale_ratio: Optional[float] = None
    units: Optional[str] = None
    keywords: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VisionDescription:
    page_number: int
    description: str
    page_type: Optional[str] = None


@dataclass(frozen=True)
class ChunkCandidate:
    document_id: str
    page_number: Optional[int]
    snippet_text: str
    metadata: Dict[str, Any]


@dataclass(frozen=True)
class RetrievedChunk:
    chunk_id: str
    document_id: str
    page_number: Optional[int]
    snippet_text: str
    metadata: Dict[str, Any]
    similarity: float


@dataclass(frozen=True)
class IndexingResult:
    chunk_count: int
    page_count: int
    warnings: List[str]


@dataclass(frozen=True)
class IngestionResult:
    document_id: str
    method: str
    chunk_count: int
    page_count: int
    warnings: List[str]
    vision_description_count: int = 0


@dataclass(frozen=True)
class EncodedImage:
    """Base64 payload, with or without a ``data:`` URL prefix."""

    data: str
    media_type: str = "image/png"


@dataclass(frozen=True)
class AnalysisTask:
    task_type: str
    system_prompt: str
    user_prompt: str
    images: List[EncodedImage] = field(default_factory=list)


@dataclass(frozen=True)
class CallOptions:
    max_tokens: int = 4096
    temperature: float = 0.2
    timeout_s: float = 60.0


@dataclass(frozen=True)
class ModelResult:
    provider: str
    model: str
    content: str
    finish_reason: Optional[str]
    confidence: float
    task_type: str
    tokens_used: Optional[int] = None


@dataclass(frozen=True)
class ModelAgreement:
    model: str
    provider: str
    items_found: int
    confidence: float


@dataclass(frozen=True)
class ConsensusResult:
    items: List[Dict[str, Any]]
    issues: List[Dict[str, Any]]
    confidence: float
    consensus_count: int
    disagreements: List[str]
    model_agreements: List[ModelAgreement]
    summary: Dict[str, Any] = field(default_factory=dict)
