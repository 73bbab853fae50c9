from typing import Dict, Iterable, List, Optional


class PipelineError(RuntimeError):
    """Base error for the extraction, indexing and inference pipeline."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class ExtractionError(PipelineError):
    """No tier produced usable text. ``warnings`` lists every tier's outcome."""

    def __init__(self, message: str, warnings: Optional[List[str]] = None) -> None:
        details = "; ".join(warnings or [])
        super().__init__(f"{message} {details}".strip())
        self.warnings = list(warnings or [])


class DownloadError(PipelineError):
    pass


class FileTooLargeError(DownloadError):
    """The remote file exceeds the configured size cap. Not retried."""


class EmbeddingDimensionError(PipelineError):
    def __init__(self, expected: int, actual: Optional[int]) -> None:
        super().__init__(
            f"Embedding dimension mismatch. Expected {expected}, got {actual}."
        )
        self.expected = expected
        self.actual = actual


class IndexingError(PipelineError):
    pass


class ProviderError(PipelineError):
    """A single provider call failed (transport, HTTP status or empty payload)."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"{provider}: {message}", original_error=original_error)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    def __init__(
        self, provider: str, message: str = "rate limited", original_error=None
    ) -> None:
        super().__init__(provider, message, status_code=429, original_error=original_error)


class ProviderTimeoutError(ProviderError):
    pass


def _format_failures(failures: Dict[str, str]) -> str:
    return "; ".join(f"{name}: {reason}" for name, reason in failures.items())


class AllProvidersFailedError(PipelineError):
    def __init__(self, failures: Dict[str, str]) -> None:
        detail = _format_failures(failures) or "no providers configured"
        super().__init__(f"All LLM providers failed. Errors: {detail}")
        self.failures = dict(failures)


class InsufficientConsensusError(PipelineError):
    def __init__(self, failures: Dict[str, str], attempted: Iterable[str] = ()) -> None:
        attempted = list(attempted)
        detail = _format_failures(failures) or "no models were selected"
        super().__init__(
            f"No model produced a usable result ({len(attempted)} attempted). {detail}"
        )
        self.failures = dict(failures)
        self.attempted = attempted
