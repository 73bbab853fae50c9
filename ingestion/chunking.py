import re
from typing import Any, Dict, List, Optional

from core.config import settings
from core.contracts import CONTENT_EXTRACTED_TEXT, ChunkCandidate, SheetMeta

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.?!])(?:\s+|$)")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").replace("\x00", "").strip()


def split_into_sentences(text: str, max_length: Optional[int] = None) -> List[str]:
    """Split on sentence punctuation; hard-split anything longer than max_length on words."""
    max_length = max_length or settings.max_chunk_char_length
    sentences: List[str] = []
    for segment in _SENTENCE_BOUNDARY.split(text):
        segment = segment.strip()
        if not segment:
            continue
        if len(segment) <= max_length:
            sentences.append(segment)
            continue
        current = ""
        for word in segment.split():
            candidate = f"{current} {word}".strip()
            if len(candidate) > max_length:
                if current:
                    sentences.append(current)
                current = word
            else:
                current = candidate
        if current:
            sentences.append(current)
    return sentences


def chunk_page_text(
    text: str,
    document_id: str,
    page_number: Optional[int],
    page_index: int,
    total_pages: int,
    sheet_meta: Optional[SheetMeta] = None,
    content_type: str = CONTENT_EXTRACTED_TEXT,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> List[ChunkCandidate]:
    """Greedily pack sentences into chunks no longer than the max chunk length.

    When a flush would leave a buffer shorter than the minimum length, the
    buffer and the overflowing sentence are appended to the previous chunk
    instead. Every chunk is cut to the max length.
    """
    max_length = settings.max_chunk_char_length
    min_length = settings.min_chunk_char_length

    normalized = normalize_whitespace(text)
    if not normalized:
        return []

    chunks: List[str] = []
    buffer = ""
    for sentence in split_into_sentences(normalized, max_length):
        if len(buffer) + len(sentence) + 1 > max_length:
            if len(buffer) < min_length and chunks:
                chunks[-1] = " ".join(part for part in (chunks[-1], buffer, sentence) if part)
                buffer = ""
                continue
            if buffer.strip():
                chunks.append(buffer.strip())
            buffer = ""
        buffer = f"{buffer} {sentence}" if buffer else sentence
    if buffer.strip():
        chunks.append(buffer.strip())

    base: Dict[str, Any] = {
        "content_type": content_type,
        "chunk_page_index": page_index,
        "total_pages": total_pages,
    }
    if sheet_meta is not None:
        base.update(
            {
                "sheet_id": sheet_meta.sheet_id,
                "sheet_title": sheet_meta.title,
                "sheet_discipline": sheet_meta.discipline,
                "sheet_type": sheet_meta.sheet_type,
            }
        )
    if extra_metadata:
        base.update(extra_metadata)

    return [
        ChunkCandidate(
            document_id=document_id,
            page_number=page_number,
            snippet_text=chunk[:max_length].strip(),
            metadata={**base, "chunk_index": index, "character_count": len(chunk)},
        )
        for index, chunk in enumerate(chunks)
    ]
