"""Pydantic models for company snapshots, compiled previews and decisions.

Company configuration documents use camelCase keys on the wire
(``slotLibrary``, ``bookingContract.enabled``); every model accepts either
spelling and is frozen, so a loaded snapshot can be shared by any number of
concurrent readers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Company-level feature flags.  Every flag is false unless the company
# snapshot sets it.
FLAG_BOOKING_INTENT_ROUTING = "bookingIntentRouting"

# Conversation flag that upstream turn handling sets for booking turns.
FLOW_FLAG_BOOKING_INTENT = "bookingIntent"


class EngineModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ── Company configuration ────────────────────────────────────────────


class QAEntry(EngineModel):
    """One question/answer pair of a company's knowledge corpus."""

    id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    keywords: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)


class Thresholds(EngineModel):
    accept: float = Field(..., ge=0.0, le=1.0)
    escalate: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> Thresholds:
        if self.escalate > self.accept:
            raise ValueError(
                f"escalate threshold {self.escalate} exceeds accept threshold {self.accept}"
            )
        return self


class RetryPolicy(EngineModel):
    """Bounded retry and circuit-breaking rules for the fallback chain."""

    max_retries_per_provider: int = Field(default=1, ge=0, le=1)
    backoff_seconds: float = Field(default=0.0, ge=0.0)
    failure_threshold: int = Field(default=3, ge=1)
    cooldown_seconds: float = Field(default=30.0, ge=0.0)


class ProviderDescriptor(EngineModel):
    id: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1)
    timeout_seconds: float = Field(..., gt=0.0)
    model: str = ""
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    max_tokens: int = Field(default=512, ge=1)
    # Only used by the ``static`` kind.
    reply: str | None = None


class SlotDefinition(EngineModel):
    id: str = Field(..., min_length=1)
    label: str = ""
    type: str = "text"
    required: bool = True
    question: str = ""
    depends_on: dict[str, bool] = Field(default_factory=dict)

    def applies_to(self, flags: dict[str, bool]) -> bool:
        return all(flags.get(name, False) is value for name, value in self.depends_on.items())


class SlotGroup(EngineModel):
    """An ordered bundle of slot ids, active when every ``when`` pair holds."""

    id: str = Field(..., min_length=1)
    label: str = ""
    slots: tuple[str, ...] = ()
    when: dict[str, bool] = Field(default_factory=dict)
    enabled: bool = True

    def is_active(self, flags: dict[str, bool]) -> bool:
        if not self.enabled:
            return False
        return all(flags.get(name, False) is value for name, value in self.when.items())


class BookingContract(EngineModel):
    version: int = Field(default=1, ge=1)
    # bookingContractV2Enabled: dark until explicitly true.
    enabled: bool = False
    intent_keywords: tuple[str, ...] = ()


class CompanyConfig(EngineModel):
    """Immutable per-company snapshot.  Replaced wholesale, never patched."""

    company_id: str = Field(..., min_length=1)
    name: str = ""
    generation: int = 0
    qa_entries: tuple[QAEntry, ...] = ()
    template_ids: tuple[str, ...] = ()
    thresholds: Thresholds | None = None
    providers: tuple[ProviderDescriptor, ...] = ()
    fallback_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    feature_flags: dict[str, bool] = Field(default_factory=dict)
    slot_library: tuple[SlotDefinition, ...] = ()
    slot_groups: tuple[SlotGroup, ...] = ()
    booking_contract: BookingContract = Field(default_factory=BookingContract)
    legacy_booking_slots: tuple[SlotDefinition, ...] = ()
    escalation_message: str | None = None

    def flag(self, name: str) -> bool:
        return self.feature_flags.get(name, False) is True

    @property
    def booking_v2_enabled(self) -> bool:
        return self.booking_contract.enabled

    @property
    def has_v2_contract(self) -> bool:
        return bool(self.slot_library) and bool(self.slot_groups)


# ── Derived / output models ──────────────────────────────────────────


class CompiledPreview(EngineModel):
    """Resolved, ordered slot list for one set of flow flags."""

    active_slot_ids: tuple[str, ...]
    missing_slot_refs: tuple[str, ...]
    matching_group_ids: tuple[str, ...]
    digest: str

    @property
    def is_configured(self) -> bool:
        return bool(self.active_slot_ids) and not self.missing_slot_refs

    @property
    def status(self) -> str:
        return "CONFIGURED" if self.is_configured else "NOT_CONFIGURED"


class Decision(str, Enum):
    ACCEPT = "Accept"
    DEGRADE = "Degrade"
    ESCALATE = "Escalate"


class Outcome(str, Enum):
    ANSWERED_FROM_KNOWLEDGE = "answered_from_knowledge"
    ANSWERED_FROM_MODEL = "answered_from_model"
    ESCALATED = "escalated"


class BookingPlan(EngineModel):
    source: str
    slot_ids: tuple[str, ...] = ()
    preview_digest: str | None = None


class RouteDecision(EngineModel):
    decision: Decision
    gate_decision: Decision | None = None
    outcome: Outcome
    answer_text: str | None = None
    source: str
    confidence_score: float
    provider_id: str | None = None
    latency_ms: float = 0.0
    booking: BookingPlan | None = None
    reasons: tuple[str, ...] = ()


class HealthGrade(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class HealthReason(EngineModel):
    severity: str  # ERROR | WARNING
    area: str
    message: str
    fix: str = ""


class BookingTruth(EngineModel):
    enabled: bool
    compiled_preview: CompiledPreview | None = None
    latent_missing_slot_refs: tuple[str, ...] = ()
    legacy_slot_count: int = 0


class RuntimeHealth(EngineModel):
    company_id: str
    generation: int
    health_grade: HealthGrade
    reasons: tuple[HealthReason, ...] = ()
    booking: BookingTruth
    qa_entry_count: int = 0
    provider_ids: tuple[str, ...] = ()
    cached_preview_count: int = 0
