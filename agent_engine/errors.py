"""Exception hierarchy for the decision & booking engine.

Only ``ConfigMissing`` is a hard failure for a routing caller.  Everything
else is absorbed at the routing layer by degrading the decision towards
escalation, and surfaced to operators through the runtime truth report.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigMissing(EngineError):
    """No usable configuration snapshot exists for the requested company."""

    def __init__(self, company_id: str, detail: str = "no configuration found"):
        self.company_id = company_id
        super().__init__(f"Company {company_id!r}: {detail}")


class Unconfigured(EngineError):
    """A snapshot exists but a dependency the engine needs is absent.

    Raised for missing thresholds or an unusable provider descriptor.  The
    engine never substitutes a default value.
    """

    def __init__(self, company_id: str, area: str, detail: str):
        self.company_id = company_id
        self.area = area
        super().__init__(f"Company {company_id!r} [{area}]: {detail}")


class BookingActivationError(EngineError):
    """Enabling the V2 booking contract was rejected."""

    def __init__(self, company_id: str, reasons: list[str], missing_slot_refs: list[str]):
        self.company_id = company_id
        self.reasons = reasons
        self.missing_slot_refs = missing_slot_refs
        super().__init__(
            f"Cannot enable booking contract V2 for {company_id!r}: " + "; ".join(reasons)
        )


class ProviderError(EngineError):
    """A single language-model provider call failed."""

    def __init__(self, provider_id: str, message: str, attempt: int = 1):
        self.provider_id = provider_id
        self.attempt = attempt
        super().__init__(f"Provider {provider_id!r} attempt {attempt}: {message}")


class ProviderTimeout(ProviderError):
    """A provider call exceeded its per-provider time budget."""


class FallbackExhausted(EngineError):
    """Every configured provider failed, was skipped, or none was configured."""

    def __init__(self, company_id: str, failures: list[ProviderError]):
        self.company_id = company_id
        self.failures = failures
        providers = ", ".join(f.provider_id for f in failures) or "none"
        super().__init__(f"Fallback chain exhausted for {company_id!r} (tried: {providers})")


class ConfigInvalid(ConfigMissing):
    """A configuration document exists but does not validate."""
