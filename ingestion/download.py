import abc
import logging
import time
from typing import Callable, List, Optional

import httpx
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import settings
from core.errors import DownloadError, FileTooLargeError

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_S = 300


class BlobStore(abc.ABC):
    """Raw-file store collaborator. Implementations return a short-lived download URL."""

    @abc.abstractmethod
    def create_signed_url(self, path: str, expires_in: int) -> str:
        ...


def download_pdf(
    store: Optional[BlobStore],
    path: str,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bytes:
    """Fetch a plan file, retrying transient failures with 1/2/4 s back-off."""
    failures: List[str] = []

    def record_failure(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        failures.append(f"attempt {retry_state.attempt_number}: {exc}")

    retrying = Retrying(
        stop=stop_after_attempt(max(1, settings.download_retries)),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=(
            retry_if_exception_type((httpx.HTTPError, DownloadError))
            & retry_if_not_exception_type(FileTooLargeError)
        ),
        after=record_failure,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=False,
    )

    owns_client = client is None
    client = client or httpx.Client(
        timeout=settings.download_timeout_s, follow_redirects=True
    )
    try:
        url_for = _url_resolver(store, path)
        return retrying(lambda: _fetch(client, url_for()))
    except RetryError as exc:
        raise DownloadError(
            f"Failed to download plan file {path}: " + "; ".join(failures),
            original_error=exc.last_attempt.exception(),
        ) from exc
    finally:
        if owns_client:
            client.close()


def _url_resolver(store: Optional[BlobStore], path: str) -> Callable[[], str]:
    if path.startswith(("http://", "https://")):
        return lambda: path
    if store is None:
        raise DownloadError(
            f"Failed to download plan file {path}: a blob store is required for non-URL paths"
        )

    def resolve() -> str:
        url = store.create_signed_url(path.split("?")[0], SIGNED_URL_TTL_S)
        if not url:
            raise DownloadError("No signed URL returned")
        return url

    return resolve


def _fetch(client: httpx.Client, url: str) -> bytes:
    max_bytes = settings.max_pdf_bytes
    with client.stream("GET", url) as response:
        response.raise_for_status()
        declared = response.headers.get("content-length")
        if declared and int(declared) > max_bytes:
            raise FileTooLargeError(f"File too large: {declared} bytes (max: {max_bytes})")
        buffer = bytearray()
        for block in response.iter_bytes():
            buffer.extend(block)
            if len(buffer) > max_bytes:
                raise FileTooLargeError(f"File too large: over {max_bytes} bytes")
    return bytes(buffer)
