import logging
from typing import Any, Dict, List, Optional

import fitz
from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import HttpResponseError

from core.config import settings
from core.contracts import PageText, TextItem

logger = logging.getLogger(__name__)

OCR_MODEL_ID = "prebuilt-read"
FALLBACK_ZOOMS = (1.0, 0.7, 0.5, 0.3)


class OCRClient:
    """Azure Document Intelligence read model, used as the last extraction tier."""

    def __init__(self, client: Optional[DocumentIntelligenceClient] = None) -> None:
        if client is None:
            if not settings.ocr_configured():
                raise RuntimeError(
                    "AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT and AZURE_DOCUMENT_INTELLIGENCE_KEY are required."
                )
            client = DocumentIntelligenceClient(
                endpoint=settings.azure_di_endpoint,
                credential=AzureKeyCredential(settings.azure_di_key),
            )
        self._client = client

    def extract_pages(self, pdf_bytes: bytes) -> List[PageText]:
        try:
            result = self._analyze(pdf_bytes, "application/pdf")
            return pages_from_result(result)
        except HttpResponseError as exc:
            if not _is_invalid_content_length(exc):
                raise
            logger.warning("OCR rejected the whole document (%s); retrying per page", exc)
        return self._extract_page_images(pdf_bytes)

    def _analyze(self, body: bytes, content_type: str) -> Dict[str, Any]:
        poller = self._client.begin_analyze_document(
            model_id=OCR_MODEL_ID,
            body=body,
            content_type=content_type,
        )
        return _to_dict(poller.result())

    def _extract_page_images(self, pdf_bytes: bytes) -> List[PageText]:
        pages: List[PageText] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for index in range(doc.page_count):
                page = doc.load_page(index)
                text = self._analyze_page_image(page)
                if text:
                    pages.append(PageText(page_number=index + 1, text=text))
        return pages

    def _analyze_page_image(self, page: fitz.Page) -> str:
        for zoom in FALLBACK_ZOOMS:
            try:
                result = self._analyze(render_page_png(page, zoom), "image/png")
            except HttpResponseError as exc:
                if _is_invalid_content_length(exc):
                    continue
                raise
            return "\n".join(entry.text for entry in pages_from_result(result))
        raise RuntimeError("Azure DI rejected all fallback image sizes.")


def pages_from_result(result: Dict[str, Any]) -> List[PageText]:
    pages: List[PageText] = []
    for index, page in enumerate(result.get("pages") or []):
        lines = page.get("lines") or []
        items = [_line_to_item(line) for line in lines if line.get("content")]
        text = "\n".join(item.text for item in items)
        if not text.strip():
            continue
        pages.append(
            PageText(
                page_number=int(page.get("pageNumber") or index + 1),
                text=text,
                source_text_items=items,
            )
        )
    return pages


def render_page_png(page: fitz.Page, zoom: float) -> bytes:
    matrix = fitz.Matrix(zoom, zoom)
    pix = page.get_pixmap(matrix=matrix, colorspace=fitz.csRGB)
    return pix.tobytes("png")


def _line_to_item(line: Dict[str, Any]) -> TextItem:
    # polygon is a flat [x1, y1, x2, y2, ...] list in page units
    polygon = line.get("polygon") or []
    xs = polygon[0::2]
    ys = polygon[1::2]
    if not xs or not ys:
        return TextItem(text=line["content"])
    return TextItem(
        text=line["content"],
        x=float(min(xs)),
        y=float(min(ys)),
        width=float(max(xs) - min(xs)),
        height=float(max(ys) - min(ys)),
    )


def _is_invalid_content_length(exc: HttpResponseError) -> bool:
    message = str(exc).lower()
    return "invalidcontentlength" in message or "input image is too large" in message


def _to_dict(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict):
        return result
    if hasattr(result, "as_dict"):
        return result.as_dict()
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return dict(result)
