"""Tests for the language-model fallback chain."""

from __future__ import annotations

import asyncio
import time

import pytest

from agent_engine.core.fallback import MODEL_ANSWER_CONFIDENCE, CircuitBreaker, FallbackChain
from agent_engine.errors import FallbackExhausted, ProviderTimeout, Unconfigured
from agent_engine.models import ProviderDescriptor, RetryPolicy


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _descriptor(provider_id: str, timeout: float = 0.5) -> ProviderDescriptor:
    return ProviderDescriptor(id=provider_id, kind="static", timeout_seconds=timeout, reply="x")


def _chain(providers: dict, mock_metrics, clock=time.monotonic) -> FallbackChain:
    return FallbackChain(lambda d: providers[d.id], metrics_client=mock_metrics, clock=clock)


def _generate(chain: FallbackChain, descriptors, policy: RetryPolicy | None = None):
    return asyncio.run(
        chain.generate(
            "acme", descriptors, "do you fix boilers?",
            policy=policy or RetryPolicy(), system_prompt="system",
        )
    )


class TestOrderAndRetry:
    def test_first_provider_answers(self, fake_provider, mock_metrics):
        primary, backup = fake_provider("primary"), fake_provider("backup")
        chain = _chain({"primary": primary, "backup": backup}, mock_metrics)

        answer = _generate(chain, [_descriptor("primary"), _descriptor("backup")])

        assert answer.text == "primary answer"
        assert answer.provider_id == "primary"
        assert answer.confidence == MODEL_ANSWER_CONFIDENCE
        assert backup.calls == 0
        mock_metrics.record_provider_success.assert_called_once()

    def test_fast_error_is_retried_once_then_advances(self, fake_provider, mock_metrics):
        primary = fake_provider("primary", RuntimeError("boom"))
        backup = fake_provider("backup")
        chain = _chain({"primary": primary, "backup": backup}, mock_metrics)

        answer = _generate(chain, [_descriptor("primary"), _descriptor("backup")])

        assert primary.calls == 2
        assert answer.provider_id == "backup"
        assert [f.attempt for f in answer.failures] == [1, 2]

    def test_retry_can_succeed(self, fake_provider, mock_metrics):
        primary = fake_provider("primary", RuntimeError("blip"), "ok")
        chain = _chain({"primary": primary}, mock_metrics)

        answer = _generate(chain, [_descriptor("primary")])

        assert primary.calls == 2
        assert answer.provider_id == "primary"
        assert len(answer.failures) == 1

    def test_no_retry_when_policy_disables_it(self, fake_provider, mock_metrics):
        primary = fake_provider("primary", RuntimeError("boom"))
        backup = fake_provider("backup")
        chain = _chain({"primary": primary, "backup": backup}, mock_metrics)

        _generate(
            chain,
            [_descriptor("primary"), _descriptor("backup")],
            RetryPolicy(max_retries_per_provider=0),
        )

        assert primary.calls == 1

    def test_unusable_provider_is_skipped(self, fake_provider, mock_metrics):
        backup = fake_provider("backup")

        def factory(descriptor):
            if descriptor.id == "broken":
                raise Unconfigured("acme", "providers", "unknown provider kind")
            return backup

        chain = FallbackChain(factory, metrics_client=mock_metrics)
        answer = _generate(chain, [_descriptor("broken"), _descriptor("backup")])
        assert answer.provider_id == "backup"
        assert answer.failures[0].provider_id == "broken"


class TestTimeouts:
    def test_all_providers_time_out_within_budget(self, fake_provider, mock_metrics):
        primary = fake_provider("primary", 5.0)
        backup = fake_provider("backup", 5.0)
        chain = _chain({"primary": primary, "backup": backup}, mock_metrics)

        started = time.monotonic()
        with pytest.raises(FallbackExhausted) as exc_info:
            _generate(chain, [_descriptor("primary", 0.05), _descriptor("backup", 0.05)])
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        # A timeout spends the provider's budget: no retry.
        assert primary.calls == 1
        assert backup.calls == 1
        failures = exc_info.value.failures
        assert [f.provider_id for f in failures] == ["primary", "backup"]
        assert all(isinstance(f, ProviderTimeout) for f in failures)

    def test_timeout_is_reported_to_metrics(self, fake_provider, mock_metrics):
        chain = _chain({"primary": fake_provider("primary", 5.0)}, mock_metrics)
        with pytest.raises(FallbackExhausted):
            _generate(chain, [_descriptor("primary", 0.05)])
        kwargs = mock_metrics.record_provider_failure.call_args.kwargs
        assert kwargs["error_type"] == "ProviderTimeout"

    def test_slow_but_in_budget_answer_is_used(self, fake_provider, mock_metrics):
        chain = _chain({"primary": fake_provider("primary", 0.01)}, mock_metrics)
        answer = _generate(chain, [_descriptor("primary", 1.0)])
        assert answer.text == "primary slow answer"

    def test_no_providers_is_exhausted(self, mock_metrics):
        chain = _chain({}, mock_metrics)
        with pytest.raises(FallbackExhausted) as exc_info:
            _generate(chain, [])
        assert exc_info.value.failures == []


class TestCircuitBreaker:
    def test_opens_after_threshold_and_half_opens_after_cooldown(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=30, clock=clock)

        breaker.record_failure()
        assert breaker.state == "closed"
        breaker.record_failure()
        assert breaker.state == "open"
        assert breaker.allow() is False

        clock.now += 30
        assert breaker.state == "half_open"
        assert breaker.allow() is True

        breaker.record_success()
        assert breaker.state == "closed"

    def test_open_provider_is_skipped_by_chain(self, fake_provider, mock_metrics):
        clock = FakeClock()
        primary = fake_provider("primary", RuntimeError("down"))
        backup = fake_provider("backup")
        chain = _chain({"primary": primary, "backup": backup}, mock_metrics, clock=clock)
        policy = RetryPolicy(max_retries_per_provider=0, failure_threshold=1, cooldown_seconds=60)
        descriptors = [_descriptor("primary"), _descriptor("backup")]

        _generate(chain, descriptors, policy)
        assert primary.calls == 1

        answer = _generate(chain, descriptors, policy)
        assert primary.calls == 1  # skipped while open
        assert answer.provider_id == "backup"
        assert "circuit open" in str(answer.failures[0])

        clock.now += 60
        _generate(chain, descriptors, policy)
        assert primary.calls == 2

    def test_breakers_are_per_company(self, mock_metrics):
        chain = _chain({}, mock_metrics)
        policy = RetryPolicy()
        assert chain.breaker("acme", "primary", policy) is chain.breaker("acme", "primary", policy)
        assert chain.breaker("acme", "primary", policy) is not chain.breaker("globex", "primary", policy)

    def test_changed_policy_replaces_breaker(self, fake_provider, mock_metrics):
        chain = _chain({"primary": fake_provider("primary", RuntimeError("boom"))}, mock_metrics)
        lenient = RetryPolicy(max_retries_per_provider=0, failure_threshold=3)
        chain.breaker("acme", "primary", lenient)

        strict = RetryPolicy(max_retries_per_provider=0, failure_threshold=1)
        with pytest.raises(FallbackExhausted):
            _generate(chain, [_descriptor("primary")], strict)

        assert chain.breaker("acme", "primary", strict).state == "open"

    def test_new_generation_resets_failure_count(self, mock_metrics):
        chain = _chain({}, mock_metrics)
        policy = RetryPolicy(failure_threshold=2)
        old = chain.breaker("acme", "primary", policy, generation=0)
        old.record_failure()

        fresh = chain.breaker("acme", "primary", policy, generation=1)
        fresh.record_failure()

        assert fresh is not old
        assert fresh.state == "closed"
