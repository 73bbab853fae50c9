import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Dict, List, Optional, Tuple

import fitz
import pdfplumber

from core.config import settings
from core.contracts import ExtractionResult, PageText, TextItem
from core.errors import ExtractionError

logger = logging.getLogger(__name__)

TierFn = Callable[[bytes], List[PageText]]

METHOD_TIER1 = "tier1"
METHOD_TIER2 = "tier2"
METHOD_TIER3 = "tier3"
METHOD_NONE = "none"


def extract_with_pymupdf(pdf_bytes: bytes) -> List[PageText]:
    pages: List[PageText] = []
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        for index in range(doc.page_count):
            page = doc.load_page(index)
            items = [
                TextItem(text=w[4], x=w[0], y=w[1], width=w[2] - w[0], height=w[3] - w[1])
                for w in page.get_text("words")
            ]
            pages.append(
                PageText(
                    page_number=index + 1,
                    text=(page.get_text("text") or "").strip(),
                    source_text_items=items,
                )
            )
            if (index + 1) % 10 == 0:
                logger.info("Tier 1 extracted %d/%d pages", index + 1, doc.page_count)
    return pages


def extract_with_pdfplumber(pdf_bytes: bytes) -> List[PageText]:
    pages: List[PageText] = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for index, page in enumerate(pdf.pages):
            items = [
                TextItem(
                    text=word["text"],
                    x=float(word["x0"]),
                    y=float(word["top"]),
                    width=float(word["x1"] - word["x0"]),
                    height=float(word["bottom"] - word["top"]),
                )
                for word in page.extract_words()
            ]
            pages.append(
                PageText(
                    page_number=index + 1,
                    text=(page.extract_text() or "").strip(),
                    source_text_items=items,
                )
            )
    return pages


def average_chars_per_page(pages: List[PageText]) -> float:
    if not pages:
        return 0.0
    return sum(len(page.text) for page in pages) / len(pages)


def merge_ocr_pages(existing: List[PageText], ocr_pages: List[PageText]) -> List[PageText]:
    """OCR text goes first on each page, followed by whatever an earlier tier found."""
    existing_by_page: Dict[int, PageText] = {page.page_number: page for page in existing}
    ocr_by_page: Dict[int, PageText] = {page.page_number: page for page in ocr_pages}
    last_page = max(list(existing_by_page) + list(ocr_by_page) + [0])

    merged: List[PageText] = []
    for page_number in range(1, last_page + 1):
        ocr_page = ocr_by_page.get(page_number)
        original = existing_by_page.get(page_number)
        if ocr_page is not None:
            text = ocr_page.text
            if original is not None and original.text:
                text = f"{text}\n{original.text}"
            items = ocr_page.source_text_items or (original.source_text_items if original else [])
            merged.append(PageText(page_number=page_number, text=text, source_text_items=items))
        elif original is not None:
            merged.append(original)
    return merged


def run_with_timeout(fn: TierFn, pdf_bytes: bytes, timeout_s: float) -> List[PageText]:
    """Race a tier against a timer. A timed-out worker is abandoned, not joined."""
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, pdf_bytes)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        future.cancel()
        raise TimeoutError(f"timed out after {timeout_s:.0f}s") from exc
    finally:
        executor.shutdown(wait=False)


class ExtractionTierManager:
    def __init__(
        self,
        primary: TierFn = extract_with_pymupdf,
        fallback: TierFn = extract_with_pdfplumber,
        ocr: Optional[TierFn] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.ocr = ocr

    def extract(self, pdf_bytes: bytes) -> ExtractionResult:
        """Try successively more expensive tiers until the chars/page bar is met.

        A tier failure becomes a warning. ExtractionError is raised only when
        no tier produced any page text at all.
        """
        threshold = settings.min_chars_per_page
        warnings: List[str] = []
        best_pages: List[PageText] = []
        best_method = METHOD_NONE
        best_score = 0.0

        pages, score = self._run_tier(
            "Tier 1", self.primary, pdf_bytes, settings.tier1_timeout_s, warnings
        )
        if pages is not None:
            best_pages, best_method, best_score = pages, METHOD_TIER1, score

        if best_score < threshold:
            pages, score = self._run_tier(
                "Tier 2", self.fallback, pdf_bytes, settings.tier2_timeout_s, warnings
            )
            if pages is not None and score > best_score:
                best_pages, best_method, best_score = pages, METHOD_TIER2, score

        if best_score < threshold:
            ocr = self._resolve_ocr()
            if ocr is None:
                warnings.append(
                    f"Low text content (avg {best_score:.0f} chars/page) and OCR is not configured."
                )
            else:
                warnings.append(
                    f"Low text content detected (avg {best_score:.0f} chars/page) - using OCR for scanned plan."
                )
                pages, _ = self._run_tier("OCR", ocr, pdf_bytes, settings.ocr_timeout_s, warnings)
                if pages:
                    merged = merge_ocr_pages(best_pages, pages)
                    merged_score = average_chars_per_page(merged)
                    if merged_score > best_score:
                        best_pages, best_method, best_score = merged, METHOD_TIER3, merged_score
                        logger.info(
                            "OCR merged text into %d pages (avg %.1f chars/page)",
                            len(pages),
                            merged_score,
                        )
                elif pages is not None:
                    warnings.append("OCR extraction attempted but returned no text. Plan may be image-only.")

        total_chars = sum(len(page.text) for page in best_pages)
        if not best_pages or total_chars == 0:
            warnings.append("No text extracted from the plan file (neither native text nor OCR).")
            raise ExtractionError("Extraction produced no text.", warnings=warnings)
        if settings.min_absolute_chars and total_chars < settings.min_absolute_chars:
            warnings.append(
                f"Best extraction ({best_method}) has {total_chars} chars, "
                f"below the {settings.min_absolute_chars} char floor."
            )
            raise ExtractionError("Extraction fell below the minimum text floor.", warnings=warnings)

        logger.info(
            "Extraction selected %s: %d pages, avg %.1f chars/page",
            best_method,
            len(best_pages),
            best_score,
        )
        return ExtractionResult(method=best_method, pages=best_pages, warnings=warnings)

    def _resolve_ocr(self) -> Optional[TierFn]:
        if self.ocr is not None:
            return self.ocr
        if not settings.ocr_configured():
            return None
        from ingestion.di_client import OCRClient

        return OCRClient().extract_pages

    def _run_tier(
        self,
        label: str,
        fn: TierFn,
        pdf_bytes: bytes,
        timeout_s: float,
        warnings: List[str],
    ) -> Tuple[Optional[List[PageText]], float]:
        started = time.monotonic()
        try:
            pages = run_with_timeout(fn, pdf_bytes, timeout_s)
        except Exception as exc:
            elapsed = time.monotonic() - started
            logger.warning("%s extraction failed after %.1fs: %s", label, elapsed, exc)
            warnings.append(f"{label} extraction failed: {exc}")
            return None, 0.0
        elapsed = time.monotonic() - started
        score = average_chars_per_page(pages)
        logger.info(
            "%s extraction: %d pages, %d chars, avg %.1f chars/page in %.1fs",
            label,
            len(pages),
            sum(len(page.text) for page in pages),
            score,
            elapsed,
        )
        return pages, score
