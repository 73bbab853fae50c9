from __future__ import annotations

from typing import Dict, List, Tuple

import fitz
import numpy as np

from core.contracts import TriageDecision, TriageMetrics

LOW_TEXT_THRESHOLD = 50
HIGH_IMAGE_COVERAGE_THRESHOLD = 0.35
HIGH_LAYOUT_COMPLEXITY_THRESHOLD = 0.6

DECISION_DESCRIBE = "describe"
DECISION_TEXT_ONLY = "text_only"


def analyze_page(page: fitz.Page) -> TriageDecision:
    """Decide whether a plan sheet carries content that only a vision pass can read."""
    text_length = len((page.get_text("text") or "").strip())
    page_area = float(page.rect.width * page.rect.height)

    metrics = TriageMetrics(
        text_length=text_length,
        text_density=(text_length / page_area) if page_area else 0.0,
        image_coverage_ratio=_estimate_ink_coverage(page),
        layout_complexity_score=_estimate_layout_complexity(page),
    )

    reason_codes: List[str] = []
    if metrics.text_length < LOW_TEXT_THRESHOLD:
        reason_codes.append("low_text")
    if metrics.image_coverage_ratio > HIGH_IMAGE_COVERAGE_THRESHOLD:
        reason_codes.append("high_image_coverage")
    if metrics.layout_complexity_score > HIGH_LAYOUT_COMPLEXITY_THRESHOLD:
        reason_codes.append("high_layout_complexity")

    decision = DECISION_DESCRIBE if reason_codes else DECISION_TEXT_ONLY
    return TriageDecision(metrics=metrics, decision=decision, reason_codes=reason_codes)


def triage_document(pdf_bytes: bytes) -> Dict[int, TriageDecision]:
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return {
            index + 1: analyze_page(doc.load_page(index))
            for index in range(doc.page_count)
        }


def select_vision_pages(pdf_bytes: bytes, max_pages: int) -> List[int]:
    """Page numbers worth describing, in document order, capped at max_pages."""
    triage = triage_document(pdf_bytes)
    selected = [
        page_number
        for page_number, decision in sorted(triage.items())
        if decision.decision == DECISION_DESCRIBE
    ]
    return selected[:max_pages]


def _estimate_ink_coverage(page: fitz.Page, zoom: float = 0.4) -> float:
    # drawings render as linework, so any non-white pixel counts
    matrix = fitz.Matrix(zoom, zoom)
    pix = page.get_pixmap(matrix=matrix, colorspace=fitz.csRGB)
    img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, 3)
    return float(np.any(img < 245, axis=2).mean())


def _estimate_layout_complexity(page: fitz.Page) -> float:
    words = page.get_text("words")
    if not words:
        return 0.0
    words_per_line: Dict[Tuple[int, int], int] = {}
    for word in words:
        key = (word[5], word[6])
        words_per_line[key] = words_per_line.get(key, 0) + 1
    total_lines = len(words_per_line)

    # callouts and dimension strings show up as many very short lines
    short_line_ratio = sum(1 for count in words_per_line.values() if count <= 3) / total_lines
    page_area = float(page.rect.width * page.rect.height)
    line_density = total_lines / max(page_area / 100000.0, 1.0)
    density_score = min(1.0, line_density / 3.0)
    return min(1.0, (0.6 * short_line_ratio) + (0.4 * density_score))
