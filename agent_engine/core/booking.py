"""Booking contract compiler and booking-source selection.

A company declares a *slot library* (every piece of information a booking
may collect) and ordered *slot groups* (conditional bundles of slot ids).
Compiling them against the conversation's flow flags yields the ordered
list of slots to collect for this turn:

    groups in declared order
      → skip groups whose ``when`` predicate does not hold
      → append each referenced slot id once (first group wins)
      → unknown ids are reported in ``missing_slot_refs``, never raised

Compilation is pure: the same library, groups and flags always produce the
same preview, digest included, which is what canary checks compare.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import ClassVar

from agent_engine.errors import BookingActivationError
from agent_engine.models import CompanyConfig, CompiledPreview, SlotDefinition, SlotGroup

logger = logging.getLogger(__name__)


def compile_booking_contract(
    slot_library: Sequence[SlotDefinition],
    slot_groups: Sequence[SlotGroup],
    active_flags: Mapping[str, bool] | None = None,
) -> CompiledPreview:
    """Compile library + groups + flags into an ordered ``CompiledPreview``."""
    flags = dict(active_flags or {})
    library = {slot.id: slot for slot in slot_library}

    active: list[str] = []
    missing: list[str] = []
    matching: list[str] = []

    for group in slot_groups:
        if not group.is_active(flags):
            continue
        matching.append(group.id)
        for slot_id in group.slots:
            slot = library.get(slot_id)
            if slot is None:
                if slot_id not in missing:
                    missing.append(slot_id)
                continue
            if slot_id in active or not slot.applies_to(flags):
                continue
            active.append(slot_id)

    return CompiledPreview(
        active_slot_ids=tuple(active),
        missing_slot_refs=tuple(missing),
        matching_group_ids=tuple(matching),
        digest=_digest(active, missing, matching),
    )


def _digest(active: list[str], missing: list[str], matching: list[str]) -> str:
    canonical = json.dumps(
        {"active": active, "missing": missing, "groups": matching},
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def resolve_slots(
    preview: CompiledPreview,
    slot_library: Sequence[SlotDefinition],
) -> tuple[SlotDefinition, ...]:
    """Map the preview's ordered ids back to their full slot definitions."""
    library = {slot.id: slot for slot in slot_library}
    return tuple(library[slot_id] for slot_id in preview.active_slot_ids)


# ── Activation audit ────────────────────────────────────────────────


@dataclass(frozen=True)
class ContractAudit:
    """Everything that blocks turning the V2 contract on."""

    base_preview: CompiledPreview
    latent_missing_slot_refs: tuple[str, ...]
    problems: tuple[str, ...]

    @property
    def clean(self) -> bool:
        return not self.problems


def audit_contract(
    slot_library: Sequence[SlotDefinition],
    slot_groups: Sequence[SlotGroup],
) -> ContractAudit:
    """Audit a contract independently of any conversation's flags.

    The base preview is compiled with no flags set.  Missing references are
    collected from *every* group, including groups that only activate on a
    branch flag, so a broken commercial branch cannot hide behind the
    residential default.
    """
    base = compile_booking_contract(slot_library, slot_groups, {})
    known = {slot.id for slot in slot_library}
    latent: list[str] = []
    for group in slot_groups:
        for slot_id in group.slots:
            if slot_id not in known and slot_id not in latent:
                latent.append(slot_id)

    problems: list[str] = []
    if not slot_library:
        problems.append("slot library is empty")
    if not slot_groups:
        problems.append("no slot groups declared")
    if latent:
        problems.append("slot groups reference unknown slot ids: " + ", ".join(latent))
    if slot_library and slot_groups and not base.active_slot_ids:
        problems.append("no active slots when no branch flags are set")

    return ContractAudit(
        base_preview=base,
        latent_missing_slot_refs=tuple(latent),
        problems=tuple(problems),
    )


def check_activation(config: CompanyConfig) -> None:
    """Raise ``BookingActivationError`` unless V2 may be enabled for *config*."""
    audit = audit_contract(config.slot_library, config.slot_groups)
    if not audit.clean:
        logger.warning(
            "Booking V2 activation rejected for %s: %s",
            config.company_id, "; ".join(audit.problems),
        )
        raise BookingActivationError(
            config.company_id,
            list(audit.problems),
            list(audit.latent_missing_slot_refs),
        )


# ── Booking source (selected once per request) ───────────────────────


@dataclass(frozen=True)
class LegacyBooking:
    kind: ClassVar[str] = "legacy"
    slots: tuple[SlotDefinition, ...]


@dataclass(frozen=True)
class CompiledV2Booking:
    kind: ClassVar[str] = "compiled_v2"
    preview: CompiledPreview
    slots: tuple[SlotDefinition, ...]


@dataclass(frozen=True)
class BookingNotConfigured:
    kind: ClassVar[str] = "not_configured"
    reason: str


BookingSource = LegacyBooking | CompiledV2Booking | BookingNotConfigured


def select_booking_source(config: CompanyConfig, preview: CompiledPreview | None) -> BookingSource:
    """Pick the booking path from the company flag and preview validity.

    The V2 path is taken only when the flag is on and the company declares a
    slot library and groups.  A declared contract that compiles badly yields
    ``BookingNotConfigured`` rather than silently falling back.  Otherwise the
    legacy slot list is used.
    """
    if config.booking_v2_enabled and config.has_v2_contract:
        if preview is None:
            return BookingNotConfigured("booking contract V2 enabled but no compiled preview")
        if not preview.is_configured:
            return BookingNotConfigured(
                f"compiled booking contract is {preview.status} "
                f"(missing: {', '.join(preview.missing_slot_refs) or 'none'})"
            )
        return CompiledV2Booking(preview=preview, slots=resolve_slots(preview, config.slot_library))

    if config.legacy_booking_slots:
        return LegacyBooking(slots=config.legacy_booking_slots)
    return BookingNotConfigured("no legacy booking slots configured")
