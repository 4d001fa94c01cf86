"""Confidence gate: turns a match score into Accept / Degrade / Escalate."""

from __future__ import annotations

from agent_engine.errors import Unconfigured
from agent_engine.models import CompanyConfig, Decision, Thresholds


def decide(top_score: float, thresholds: Thresholds | None, *, company_id: str = "?") -> Decision:
    """Apply the company's thresholds to *top_score*.

    ``score >= accept`` accepts, ``escalate <= score < accept`` degrades to the
    language-model chain, anything lower escalates.  Both boundaries are
    inclusive on the upper side.  Missing thresholds raise ``Unconfigured``.
    """
    if thresholds is None:
        raise Unconfigured(company_id, "thresholds", "no confidence thresholds configured")
    if top_score >= thresholds.accept:
        return Decision.ACCEPT
    if top_score >= thresholds.escalate:
        return Decision.DEGRADE
    return Decision.ESCALATE


def decide_for(config: CompanyConfig, top_score: float) -> Decision:
    return decide(top_score, config.thresholds, company_id=config.company_id)
