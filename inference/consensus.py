import asyncio
import dataclasses
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from core.config import settings
from core.contracts import (
    AnalysisTask,
    CallOptions,
    ConsensusResult,
    EncodedImage,
    ModelAgreement,
    ModelResult,
)
from core.errors import InsufficientConsensusError, ProviderTimeoutError, RateLimitError
from inference.health import ProviderHealthTracker, get_health_tracker
from inference.parsing import normalize_issue, normalize_item, parse_model_content
from inference.prompts import build_specialized_prompt
from inference.providers import ProviderClient, build_providers

logger = logging.getLogger(__name__)

RAW_EXCERPT_CHARS = 500

# Static per-task specialization scores used to pick models.
MODEL_ROSTER: Dict[str, Dict[str, float]] = {
    "gpt-4o": {
        "takeoff": 0.95,
        "quality": 0.90,
        "bid_analysis": 0.92,
        "code_compliance": 0.85,
        "cost_estimation": 0.88,
    },
    "gpt-4-turbo": {
        "takeoff": 0.88,
        "quality": 0.95,
        "bid_analysis": 0.85,
        "code_compliance": 0.80,
        "cost_estimation": 0.82,
    },
    "claude-3-haiku-20240307": {
        "takeoff": 0.85,
        "quality": 0.80,
        "bid_analysis": 0.82,
        "code_compliance": 0.85,
        "cost_estimation": 0.80,
    },
    "grok-4": {
        "takeoff": 0.95,
        "quality": 0.92,
        "bid_analysis": 0.95,
        "code_compliance": 0.90,
        "cost_estimation": 0.92,
    },
    "gemini-1.5-flash": {
        "takeoff": 0.82,
        "quality": 0.85,
        "bid_analysis": 0.80,
        "code_compliance": 0.75,
        "cost_estimation": 0.88,
    },
}

MODEL_PROVIDERS: Dict[str, str] = {
    "gpt-4o": "openai",
    "gpt-4-turbo": "openai",
    "claude-3-haiku-20240307": "anthropic",
    "grok-4": "xai",
    "gemini-1.5-flash": "google",
}


def select_models(
    task_type: str,
    count: Optional[int] = None,
    available: Optional[Iterable[str]] = None,
) -> List[str]:
    """Top models for a task type, restricted to usable providers.

    ``available`` limits the providers considered; by default a provider is
    usable when it is enabled and has a credential.
    """
    limit = settings.max_models_per_analysis if count is None else min(
        count, settings.max_models_per_analysis
    )
    ranked = sorted(
        MODEL_ROSTER,
        key=lambda model: MODEL_ROSTER[model].get(task_type, 0.0),
        reverse=True,
    )[:limit]
    allowed = set(available) if available is not None else None
    selected = []
    for model in ranked:
        provider = MODEL_PROVIDERS[model]
        if allowed is not None and provider not in allowed:
            continue
        if allowed is None and not settings.provider_enabled(provider):
            continue
        selected.append(model)
    return selected


def normalize_for_match(text: Optional[str]) -> str:
    """Lowercase, strip punctuation and sort tokens so word order does not matter."""
    tokens = re.findall(r"[a-z0-9]+(?:\.[0-9]+)?", (text or "").lower())
    return " ".join(sorted(tokens))


def similarity(left: Optional[str], right: Optional[str]) -> float:
    left_norm = normalize_for_match(left)
    right_norm = normalize_for_match(right)
    if not left_norm or not right_norm:
        return 0.0
    return Levenshtein.normalized_similarity(left_norm, right_norm)


def consensus_threshold(model_count: int, fraction: Optional[float] = None) -> int:
    fraction = settings.consensus_threshold if fraction is None else fraction
    # round() keeps 10 * 0.3 from becoming 3.0000000000000004.
    return max(1, math.ceil(round(model_count * fraction, 9)))


def group_similar(records: List[Dict[str, Any]], matches) -> List[List[Dict[str, Any]]]:
    groups: List[List[Dict[str, Any]]] = []
    clustered = set()
    for i, record in enumerate(records):
        if i in clustered:
            continue
        clustered.add(i)
        group = [record]
        for j in range(i + 1, len(records)):
            if j not in clustered and matches(record, records[j]):
                clustered.add(j)
                group.append(records[j])
        groups.append(group)
    return groups


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _providers_of(group: List[Dict[str, Any]]) -> List[str]:
    providers: List[str] = []
    for record in group:
        provider = record.get("ai_provider") or "unknown"
        if provider not in providers:
            providers.append(provider)
    return providers


def merge_item_group(group: List[Dict[str, Any]]) -> Dict[str, Any]:
    base = group[0]
    providers = _providers_of(group)
    quantities = [item.get("quantity") or 0.0 for item in group]
    merged = dict(base)
    merged["quantity"] = round(_mean(quantities), 2)
    merged["confidence"] = _mean([item.get("confidence", 0.5) for item in group])
    merged["ai_provider"] = "consensus" if len(providers) > 1 else providers[0]
    merged["consensus_count"] = len(group)
    notes = f"Consensus from {', '.join(providers)}"
    if base.get("notes"):
        notes = f"{notes} | {base['notes']}"
    merged["notes"] = notes
    return merged


def merge_issue_group(group: List[Dict[str, Any]]) -> Dict[str, Any]:
    providers = _providers_of(group)
    merged = dict(group[0])
    merged["confidence"] = _mean([issue.get("confidence", 0.5) for issue in group])
    merged["ai_provider"] = "consensus" if len(providers) > 1 else providers[0]
    merged["consensus_count"] = len(group)
    return merged


ParsedResult = Tuple[ModelResult, Dict[str, Any]]


class ConsensusEngine:
    def __init__(
        self,
        providers: Optional[Dict[str, ProviderClient]] = None,
        health: Optional[ProviderHealthTracker] = None,
        threshold: Optional[float] = None,
        item_similarity: Optional[float] = None,
        issue_similarity: Optional[float] = None,
        disagreement_deviation: Optional[float] = None,
        model_timeout_s: Optional[float] = None,
    ) -> None:
        self._providers = providers
        self.health = health or get_health_tracker()
        self.threshold = settings.consensus_threshold if threshold is None else threshold
        self.item_similarity = (
            settings.item_similarity_threshold if item_similarity is None else item_similarity
        )
        self.issue_similarity = (
            settings.issue_similarity_threshold if issue_similarity is None else issue_similarity
        )
        self.disagreement_deviation = (
            settings.disagreement_deviation
            if disagreement_deviation is None
            else disagreement_deviation
        )
        self.model_timeout_s = (
            settings.model_timeout_s if model_timeout_s is None else model_timeout_s
        )

    @property
    def providers(self) -> Dict[str, ProviderClient]:
        if self._providers is None:
            self._providers = build_providers(sorted(set(MODEL_PROVIDERS.values())))
        return self._providers

    async def aclose(self) -> None:
        """Close every provider client held by this engine."""
        if not self._providers:
            return
        for name, provider in self._providers.items():
            try:
                await provider.aclose()
            except Exception as exc:
                logger.warning("Closing provider %s failed: %s", name, exc)

    async def __aenter__(self) -> "ConsensusEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def analyze_with_consensus(
        self, images: List[EncodedImage], task: AnalysisTask
    ) -> ConsensusResult:
        task = dataclasses.replace(task, images=list(images))
        models = self._select(task.task_type)
        logger.info("Using models for %s: %s", task.task_type, ", ".join(models) or "none")

        outcomes = await asyncio.gather(
            *[self._run_model(model, task) for model in models],
            return_exceptions=True,
        )

        failures: Dict[str, str] = {}
        successes: List[ModelResult] = []
        for model, outcome in zip(models, outcomes):
            if isinstance(outcome, BaseException):
                reason = str(outcome) or type(outcome).__name__
                logger.warning("Model %s failed: %s", model, reason)
                failures[model] = reason
            else:
                logger.info("Model %s succeeded: %d chars", model, len(outcome.content))
                successes.append(outcome)

        parsed: List[ParsedResult] = []
        for result in successes:
            data = parse_model_content(result.content)
            if data is None:
                logger.warning(
                    "Dropping unparseable response from %s: %r",
                    result.model,
                    result.content[:RAW_EXCERPT_CHARS],
                )
                failures[result.model] = "unparseable response"
                continue
            parsed.append((result, data))

        if not parsed:
            raise InsufficientConsensusError(failures, attempted=models)
        if len(parsed) == 1:
            return self._single_result(task, *parsed[0])
        return self.build_consensus(task.task_type, parsed)

    def build_consensus(self, task_type: str, parsed: List[ParsedResult]) -> ConsensusResult:
        model_count = len(parsed)
        required = consensus_threshold(model_count, self.threshold)

        all_items = [
            normalize_item(raw, result.provider)
            for result, data in parsed
            for raw in _as_list(data.get("items"))
        ]
        item_groups = group_similar(all_items, self.items_match)
        items = [merge_item_group(group) for group in item_groups if len(group) >= required]

        issues: List[Dict[str, Any]] = []
        if task_type == "quality":
            all_issues = [
                normalize_issue(raw, result.provider)
                for result, data in parsed
                for raw in _as_list(data.get("issues"))
            ]
            issue_groups = group_similar(all_issues, self.issues_match)
            issues = [
                merge_issue_group(group) for group in issue_groups if len(group) >= required
            ]

        logger.info(
            "Consensus over %d models: %d/%d item clusters promoted (threshold %d)",
            model_count,
            len(items),
            len(item_groups),
            required,
        )
        return ConsensusResult(
            items=items,
            issues=issues,
            confidence=_mean([result.confidence for result, _ in parsed]),
            consensus_count=model_count,
            disagreements=self.find_disagreements(parsed),
            model_agreements=_agreements(parsed),
            summary={
                "total_items": len(items),
                "total_issues": len(issues),
                "models": [result.model for result, _ in parsed],
                "threshold": required,
            },
        )

    def items_match(self, left: Dict[str, Any], right: Dict[str, Any]) -> bool:
        if left.get("category") != right.get("category"):
            return False
        return (
            similarity(left.get("name"), right.get("name")) > self.item_similarity
            or similarity(left.get("description"), right.get("description"))
            > self.item_similarity
        )

    def issues_match(self, left: Dict[str, Any], right: Dict[str, Any]) -> bool:
        if left.get("severity") != right.get("severity"):
            return False
        if left.get("category") != right.get("category"):
            return False
        return (
            similarity(left.get("description"), right.get("description"))
            >= self.issue_similarity
        )

    def find_disagreements(self, parsed: List[ParsedResult]) -> List[str]:
        counts = [len(_as_list(data.get("items"))) for _, data in parsed]
        average = _mean(counts)
        disagreements = []
        for (result, _), count in zip(parsed, counts):
            if abs(count - average) > average * self.disagreement_deviation:
                disagreements.append(f"{result.model} found {count} items (avg: {average:.1f})")
        return disagreements

    def _select(self, task_type: str) -> List[str]:
        available = [name for name in self.providers if not self.health.is_degraded(name)]
        return select_models(task_type, available=available)

    async def _run_model(self, model: str, task: AnalysisTask) -> ModelResult:
        provider_name = MODEL_PROVIDERS[model]
        provider = self.providers[provider_name]
        options = CallOptions(timeout_s=self.model_timeout_s)
        try:
            return await asyncio.wait_for(
                provider.generate(
                    task,
                    options,
                    model=model,
                    system_prompt=build_specialized_prompt(task.system_prompt, task.task_type),
                    json_mode=True,
                ),
                timeout=self.model_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            self.health.mark_degraded(provider_name)
            raise ProviderTimeoutError(
                provider_name, f"{model} timed out after {self.model_timeout_s:.0f}s"
            ) from exc
        except (RateLimitError, ProviderTimeoutError):
            self.health.mark_degraded(provider_name)
            raise

    def _single_result(
        self, task: AnalysisTask, result: ModelResult, data: Dict[str, Any]
    ) -> ConsensusResult:
        items = [normalize_item(raw, result.provider) for raw in _as_list(data.get("items"))]
        issues = [normalize_issue(raw, result.provider) for raw in _as_list(data.get("issues"))]
        summary = data.get("summary") if isinstance(data.get("summary"), dict) else {}
        logger.info("Single-model result from %s: %d items", result.model, len(items))
        return ConsensusResult(
            items=items,
            issues=issues,
            confidence=result.confidence,
            consensus_count=1,
            disagreements=[],
            model_agreements=_agreements([(result, data)]),
            summary=summary,
        )


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _agreements(parsed: List[ParsedResult]) -> List[ModelAgreement]:
    return [
        ModelAgreement(
            model=result.model,
            provider=result.provider,
            items_found=len(_as_list(data.get("items"))),
            confidence=result.confidence,
        )
        for result, data in parsed
    ]


def analyze_with_consensus_sync(
    images: List[EncodedImage],
    task: AnalysisTask,
    engine: Optional[ConsensusEngine] = None,
) -> ConsensusResult:
    """Blocking entry point for scripts and synchronous callers.

    An engine created here is closed before the event loop shuts down. A
    caller-supplied engine is left open.
    """
    if engine is not None:
        return asyncio.run(engine.analyze_with_consensus(images, task))

    async def run() -> ConsensusResult:
        async with ConsensusEngine() as owned:
            return await owned.analyze_with_consensus(images, task)

    return asyncio.run(run())
