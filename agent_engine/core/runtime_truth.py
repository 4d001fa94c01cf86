"""Runtime truth: the on-demand health grade of one company's snapshot.

The report is built from the same loader snapshot and the same preview memo
the routing path uses; there is no separate health cache to go stale.

Grading: any ERROR reason → RED, else any WARNING → YELLOW, else GREEN.
"""

from __future__ import annotations

import logging

from agent_engine.core.booking import ContractAudit, audit_contract
from agent_engine.models import (
    BookingTruth,
    CompanyConfig,
    CompiledPreview,
    HealthGrade,
    HealthReason,
    RuntimeHealth,
)
from agent_engine.services.config_loader import CompanyConfigLoader

logger = logging.getLogger(__name__)

ERROR = "ERROR"
WARNING = "WARNING"


def _booking_reasons(
    config: CompanyConfig,
    preview: CompiledPreview | None,
    audit: ContractAudit | None,
) -> list[HealthReason]:
    reasons: list[HealthReason] = []

    if config.booking_v2_enabled:
        if preview is None or audit is None:
            reasons.append(HealthReason(
                severity=ERROR,
                area="bookingContractV2",
                message=(
                    "Booking contract V2 enabled but no slotLibrary/slotGroups configured; "
                    "booking turns use the legacy slots"
                ),
                fix="Add slotLibrary + slotGroups (or disable bookingContract.enabled)",
            ))
        elif not preview.active_slot_ids:
            reasons.append(HealthReason(
                severity=ERROR,
                area="bookingContractV2",
                message="Booking contract V2 enabled but compiled active slots is empty",
                fix="Ensure an enabled slot group matches default flags and references library slots",
            ))
        elif preview.missing_slot_refs or audit.latent_missing_slot_refs:
            missing = audit.latent_missing_slot_refs or preview.missing_slot_refs
            reasons.append(HealthReason(
                severity=ERROR,
                area="bookingContractV2",
                message="Booking contract V2 slot groups reference missing slotLibrary ids",
                fix=f"Fix slotGroups.slots (missing: {', '.join(missing[:5])})",
            ))
        return reasons

    if audit is not None and not audit.clean:
        reasons.append(HealthReason(
            severity=WARNING,
            area="bookingContractV2",
            message="Dark booking contract V2 cannot be enabled: " + "; ".join(audit.problems),
            fix="Fix the slot library/groups before the canary",
        ))
    if not config.legacy_booking_slots:
        reasons.append(HealthReason(
            severity=WARNING,
            area="booking",
            message="Booking unconfigured: V2 disabled and no legacy booking slots",
            fix="Add legacyBookingSlots or enable a clean booking contract V2",
        ))
    return reasons


def build_report(
    config: CompanyConfig,
    preview: CompiledPreview | None,
    cached_previews: int = 0,
) -> RuntimeHealth:
    reasons: list[HealthReason] = []
    audit = audit_contract(config.slot_library, config.slot_groups) if config.has_v2_contract else None

    if not config.qa_entries:
        reasons.append(HealthReason(
            severity=ERROR, area="scenarios", message="No QA entries loaded (zero scenarios)",
            fix="Add qaEntries to the company configuration",
        ))
    if not config.template_ids:
        reasons.append(HealthReason(
            severity=WARNING, area="templates", message="No templates referenced",
            fix="Set templateIds",
        ))
    if config.thresholds is None:
        reasons.append(HealthReason(
            severity=ERROR, area="thresholds", message="Confidence thresholds not configured",
            fix="Set thresholds.accept and thresholds.escalate",
        ))
    if not config.providers:
        reasons.append(HealthReason(
            severity=ERROR, area="providers",
            message="No language-model providers configured; degraded turns escalate",
            fix="Add at least one entry to providers",
        ))
    reasons.extend(_booking_reasons(config, preview, audit))

    if any(r.severity == ERROR for r in reasons):
        grade = HealthGrade.RED
    elif reasons:
        grade = HealthGrade.YELLOW
    else:
        grade = HealthGrade.GREEN

    return RuntimeHealth(
        company_id=config.company_id,
        generation=config.generation,
        health_grade=grade,
        reasons=tuple(reasons),
        booking=BookingTruth(
            enabled=config.booking_v2_enabled,
            compiled_preview=preview,
            latent_missing_slot_refs=audit.latent_missing_slot_refs if audit else (),
            legacy_slot_count=len(config.legacy_booking_slots),
        ),
        qa_entry_count=len(config.qa_entries),
        provider_ids=tuple(p.id for p in config.providers),
        cached_preview_count=cached_previews,
    )


class RuntimeTruthReporter:
    def __init__(self, loader: CompanyConfigLoader) -> None:
        self._loader = loader

    def report(self, company_id: str) -> RuntimeHealth:
        """Grade *company_id*'s current snapshot.  Raises ``ConfigMissing``."""
        config = self._loader.load(company_id)
        # Inspection previews use an empty flag set.
        preview = self._loader.compiled_preview(config, {}) if config.has_v2_contract else None
        health = build_report(config, preview, self._loader.cached_preview_count(company_id))
        logger.info(
            "Runtime truth: %s generation %d → %s (%d reasons)",
            company_id, config.generation, health.health_grade.value, len(health.reasons),
        )
        return health
