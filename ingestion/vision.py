import base64
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import fitz
from openai import OpenAI

from core.config import settings
from core.contracts import VisionDescription
from inference.prompts import VISION_DESCRIPTION_PROMPT
from ingestion.di_client import render_page_png

logger = logging.getLogger(__name__)

RENDER_ZOOM = 0.5
MAX_TOKENS = 500
TEMPERATURE = 0.3

_PAGE_TYPE_PATTERNS = [
    re.compile(r"\*\*Page Type\*\*:\s*([^\n]+)", re.IGNORECASE),
    re.compile(r"Page Type:\s*([^\n]+)", re.IGNORECASE),
    re.compile(
        r"^(Floor Plan|Elevation|Section|Detail|Schedule|Legend|Title Sheet|Site Plan)",
        re.IGNORECASE | re.MULTILINE,
    ),
]


def vision_enabled() -> bool:
    return settings.enable_vision_descriptions and bool(settings.openai_api_key)


def parse_page_type(description: str) -> Optional[str]:
    for pattern in _PAGE_TYPE_PATTERNS:
        match = pattern.search(description)
        if match:
            return match.group(1).replace("*", "").strip()
    return None


class VisionDescriber:
    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self._client = client or OpenAI(api_key=settings.openai_api_key)
        self.model = settings.vision_model

    def describe_pages(
        self, pdf_bytes: bytes, page_numbers: List[int]
    ) -> Tuple[List[VisionDescription], List[str]]:
        """Describe pages in parallel batches; a failed page becomes a warning."""
        page_numbers = page_numbers[: settings.vision_max_pages]
        images = self._render(pdf_bytes, page_numbers)
        batch_size = max(1, settings.vision_batch_size)
        descriptions: List[VisionDescription] = []
        warnings: List[str] = []

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(images), batch_size):
                batch = images[start : start + batch_size]
                outcomes = list(executor.map(self._describe_safely, batch))
                for page_number, outcome in zip((p for p, _ in batch), outcomes):
                    if isinstance(outcome, VisionDescription):
                        descriptions.append(outcome)
                    else:
                        warnings.append(f"Page {page_number}: {outcome}")
                logger.info(
                    "Vision progress: %d/%d pages analyzed",
                    min(start + len(batch), len(images)),
                    len(images),
                )
        return descriptions, warnings

    def describe_image(self, page_number: int, image_b64: str) -> VisionDescription:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_DESCRIPTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{image_b64}"},
                        },
                    ],
                }
            ],
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
        )
        description = (response.choices[0].message.content or "").strip()
        if not description:
            raise ValueError("empty description")
        return VisionDescription(
            page_number=page_number,
            description=description,
            page_type=parse_page_type(description),
        )

    def _describe_safely(self, entry: Tuple[int, str]):
        page_number, image_b64 = entry
        try:
            return self.describe_image(page_number, image_b64)
        except Exception as exc:
            logger.warning("Vision description failed for page %d: %s", page_number, exc)
            return str(exc)

    def _render(self, pdf_bytes: bytes, page_numbers: List[int]) -> List[Tuple[int, str]]:
        images: List[Tuple[int, str]] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for page_number in page_numbers:
                if not 1 <= page_number <= doc.page_count:
                    continue
                png = render_page_png(doc.load_page(page_number - 1), RENDER_ZOOM)
                images.append((page_number, base64.b64encode(png).decode("ascii")))
        return images
