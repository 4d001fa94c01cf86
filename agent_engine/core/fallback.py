"""Language-model fallback chain.

Providers are tried strictly in the company's declared order.  Each
provider gets one time budget (``timeoutSeconds``) shared by its first
attempt and its single optional retry, so the whole chain never runs longer
than the sum of the configured timeouts.  A timeout spends the budget and
advances immediately; a fast error may be retried once inside what is left.

A per-(company, provider) circuit breaker skips a provider after
``failureThreshold`` consecutive failed turns, for ``cooldownSeconds``.
When every provider has failed or been skipped the chain raises
``FallbackExhausted`` and the caller escalates.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from agent_engine.errors import FallbackExhausted, ProviderError, ProviderTimeout, Unconfigured
from agent_engine.models import ProviderDescriptor, RetryPolicy
from agent_engine.services.llm_providers import ChatProvider, build_provider
from agent_engine.services.metrics import MetricsClient, metrics

logger = logging.getLogger(__name__)

# Confidence reported for generated answers; deliberately distinct from any
# knowledge-match score.
MODEL_ANSWER_CONFIDENCE = 0.5


@dataclass(frozen=True)
class ModelAnswer:
    text: str
    provider_id: str
    latency_ms: float
    confidence: float = MODEL_ANSWER_CONFIDENCE
    failures: tuple[ProviderError, ...] = field(default=())


class CircuitBreaker:
    """Consecutive-failure breaker: closed → open → half-open → closed."""

    def __init__(
        self,
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return "closed"
        if self._clock() - self._opened_at >= self._cooldown:
            return "half_open"
        return "open"

    def allow(self) -> bool:
        return self.state != "open"

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self._threshold:
            self._opened_at = self._clock()


class FallbackChain:
    """Ordered provider chain with bounded retry and circuit breaking."""

    def __init__(
        self,
        provider_factory: Callable[[ProviderDescriptor], ChatProvider] = build_provider,
        *,
        metrics_client: MetricsClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = provider_factory
        self._metrics = metrics_client or metrics
        self._clock = clock
        self._breakers: dict[tuple[str, str], tuple[tuple[int, int, float], CircuitBreaker]] = {}
        self._lock = threading.Lock()

    def breaker(
        self,
        company_id: str,
        provider_id: str,
        policy: RetryPolicy,
        generation: int = 0,
    ) -> CircuitBreaker:
        """The breaker for one provider of one company snapshot.

        A new generation or a changed policy replaces the breaker, so failure
        counts never outlive the configuration they were recorded under.
        """
        key = (company_id, provider_id)
        stamp = (generation, policy.failure_threshold, policy.cooldown_seconds)
        with self._lock:
            entry = self._breakers.get(key)
            if entry is None or entry[0] != stamp:
                if entry is not None:
                    logger.info(
                        "Fallback: %s/%s breaker reset (generation %d)",
                        company_id, provider_id, generation,
                    )
                entry = (stamp, CircuitBreaker(policy.failure_threshold, policy.cooldown_seconds, self._clock))
                self._breakers[key] = entry
            return entry[1]

    async def generate(
        self,
        company_id: str,
        providers: Sequence[ProviderDescriptor],
        text: str,
        *,
        policy: RetryPolicy,
        system_prompt: str,
        generation: int = 0,
    ) -> ModelAnswer:
        """Return the first successful answer or raise ``FallbackExhausted``."""
        failures: list[ProviderError] = []

        for descriptor in providers:
            breaker = self.breaker(company_id, descriptor.id, policy, generation)
            if not breaker.allow():
                logger.info("Fallback: %s/%s skipped (circuit open)", company_id, descriptor.id)
                failures.append(ProviderError(descriptor.id, "circuit open", attempt=0))
                continue

            try:
                provider = self._factory(descriptor)
            except (Unconfigured, OSError) as exc:
                logger.error("Fallback: %s/%s unusable: %s", company_id, descriptor.id, exc)
                failures.append(ProviderError(descriptor.id, str(exc), attempt=0))
                breaker.record_failure()
                continue

            answer = await self._try_provider(
                company_id, descriptor, provider, text, policy, system_prompt, failures
            )
            if answer is not None:
                breaker.record_success()
                return ModelAnswer(
                    text=answer[0],
                    provider_id=descriptor.id,
                    latency_ms=answer[1],
                    failures=tuple(failures),
                )
            breaker.record_failure()

        logger.warning(
            "Fallback: chain exhausted for %s after %d failures", company_id, len(failures),
        )
        raise FallbackExhausted(company_id, failures)

    async def _try_provider(
        self,
        company_id: str,
        descriptor: ProviderDescriptor,
        provider: ChatProvider,
        text: str,
        policy: RetryPolicy,
        system_prompt: str,
        failures: list[ProviderError],
    ) -> tuple[str, float] | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + descriptor.timeout_seconds
        max_attempts = policy.max_retries_per_provider + 1

        for attempt in range(1, max_attempts + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                failures.append(ProviderTimeout(descriptor.id, "time budget spent", attempt))
                return None

            started = loop.time()
            try:
                answer = await asyncio.wait_for(
                    provider.agenerate(system_prompt, text), timeout=remaining,
                )
            except asyncio.TimeoutError:
                elapsed = (loop.time() - started) * 1000
                self._metrics.record_provider_failure(
                    company_id, descriptor.id, error_type="ProviderTimeout", latency_ms=elapsed,
                )
                logger.warning(
                    "Fallback: %s/%s attempt %d/%d timed out (%.0fms)",
                    company_id, descriptor.id, attempt, max_attempts, elapsed,
                )
                failures.append(
                    ProviderTimeout(descriptor.id, f"timed out after {elapsed:.0f}ms", attempt)
                )
                return None
            except Exception as exc:
                elapsed = (loop.time() - started) * 1000
                self._metrics.record_provider_failure(
                    company_id, descriptor.id, error_type=type(exc).__name__, latency_ms=elapsed,
                )
                logger.warning(
                    "Fallback: %s/%s attempt %d/%d failed (%s)",
                    company_id, descriptor.id, attempt, max_attempts, type(exc).__name__,
                )
                failures.append(ProviderError(descriptor.id, f"{type(exc).__name__}: {exc}", attempt))
                if attempt < max_attempts and policy.backoff_seconds > 0:
                    await asyncio.sleep(
                        min(policy.backoff_seconds, max(0.0, deadline - loop.time()))
                    )
                continue

            elapsed = (loop.time() - started) * 1000
            self._metrics.record_provider_success(company_id, descriptor.id, latency_ms=elapsed)
            logger.debug("Fallback: %s answered by %s in %.0fms", company_id, descriptor.id, elapsed)
            return answer, elapsed

        return None
