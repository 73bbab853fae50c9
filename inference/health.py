import logging
import threading
import time
from typing import Callable, Dict, Optional

from core.config import settings

logger = logging.getLogger(__name__)


class ProviderHealthTracker:
    """Per-provider "degraded until" marks with lazy expiry.

    One instance is created per process and handed to the router and the
    consensus engine. All access goes through a lock so concurrent tasks can
    share it.
    """

    def __init__(
        self,
        ttl_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = settings.degradation_ttl_s if ttl_s is None else ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._degraded_until: Dict[str, float] = {}

    def mark_degraded(self, provider: str) -> None:
        with self._lock:
            self._degraded_until[provider] = self._clock() + self.ttl_s
        logger.warning("Marked provider %s as degraded for %.0f minutes", provider, self.ttl_s / 60)

    def is_degraded(self, provider: str) -> bool:
        with self._lock:
            until = self._degraded_until.get(provider)
            if until is None:
                return False
            if self._clock() >= until:
                del self._degraded_until[provider]
                return False
            return True

    def snapshot(self) -> Dict[str, float]:
        """Seconds remaining per degraded provider."""
        now = self._clock()
        with self._lock:
            return {
                name: until - now
                for name, until in self._degraded_until.items()
                if until > now
            }


_TRACKER: Optional[ProviderHealthTracker] = None
_TRACKER_LOCK = threading.Lock()


def get_health_tracker() -> ProviderHealthTracker:
    global _TRACKER
    with _TRACKER_LOCK:
        if _TRACKER is None:
            _TRACKER = ProviderHealthTracker()
        return _TRACKER


def _reset_for_testing() -> None:
    global _TRACKER
    with _TRACKER_LOCK:
        _TRACKER = None
