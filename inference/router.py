import logging
from typing import Dict, List, Optional

from core.config import settings
from core.contracts import AnalysisTask, CallOptions, ModelResult
from core.errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from inference.health import ProviderHealthTracker, get_health_tracker
from inference.providers import ProviderClient

logger = logging.getLogger(__name__)


class ModelRouter:
    """Sends a task to the first reachable provider in priority order."""

    def __init__(
        self,
        providers: Dict[str, ProviderClient],
        health: Optional[ProviderHealthTracker] = None,
        priority: Optional[List[str]] = None,
    ) -> None:
        self.providers = providers
        self.health = health or get_health_tracker()
        self.priority = list(priority or settings.provider_priority)

    async def call_provider(
        self,
        name: str,
        task: AnalysisTask,
        options: Optional[CallOptions] = None,
    ) -> ModelResult:
        provider = self.providers[name]
        try:
            return await provider.generate(task, options)
        except (RateLimitError, ProviderTimeoutError):
            self.health.mark_degraded(name)
            raise

    async def call(
        self, task: AnalysisTask, options: Optional[CallOptions] = None
    ) -> ModelResult:
        failures: Dict[str, str] = {}
        for name in self._ordered_names():
            if self.health.is_degraded(name):
                logger.info("Skipping degraded provider %s", name)
                failures[name] = "degraded"
                continue
            provider = self.providers[name]
            try:
                await provider.probe()
            except RateLimitError as exc:
                self.health.mark_degraded(name)
                failures[name] = f"probe failed: {exc}"
                continue
            except ProviderError as exc:
                logger.warning("Probe for %s failed, skipping: %s", name, exc)
                failures[name] = f"probe failed: {exc}"
                continue

            logger.info("Trying provider %s for %s", name, task.task_type)
            try:
                result = await self.call_provider(name, task, options)
            except ProviderError as exc:
                logger.warning("Provider %s failed: %s", name, exc)
                failures[name] = str(exc)
                continue
            logger.info("Provider %s succeeded for %s", name, task.task_type)
            return result

        raise AllProvidersFailedError(failures)

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()

    def _ordered_names(self) -> List[str]:
        names = [name for name in self.priority if name in self.providers]
        names.extend(name for name in self.providers if name not in names)
        return names
