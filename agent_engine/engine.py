"""LangGraph-based turn router for the decision & booking engine.

Architecture:
  Each inbound turn runs through a LangGraph StateGraph with six nodes:

    1. **match**: scores the text against the company's QA corpus
    2. **gate**: applies the company thresholds to the top score
    3. **accept**: answers with the matched entry, no model call
    4. **fallback**: asks the ordered provider chain for an answer
    5. **escalate**: generic, source-tagged answer plus escalation
    6. **plan_booking**: for booking-intent turns, resolves the slot plan

  Routing:
    match → gate → (Accept?)   → accept   → plan_booking → END
                 → (Degrade?)  → fallback → plan_booking → END
                                          → (exhausted?) → escalate → plan_booking → END
                 → (Escalate?) → escalate → plan_booking → END

  The company snapshot is loaded *before* the graph runs, so a missing
  configuration is a hard ``ConfigMissing`` for the caller.  Missing
  thresholds and an exhausted provider chain are absorbed here and end in
  Escalate; the runtime truth report is where operators see why.
"""

from __future__ import annotations

import logging
import operator
import time
from collections.abc import Mapping
from typing import Annotated

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from agent_engine.config import COMPANY_CONFIG_DIR, CONFIG_CACHE_MAX_BYTES
from agent_engine.core.booking import BookingNotConfigured, CompiledV2Booking, select_booking_source
from agent_engine.core.fallback import FallbackChain
from agent_engine.core.flow_state import FlowStateStore
from agent_engine.core.gate import decide_for
from agent_engine.core.matcher import KnowledgeMatcher, Matcher, keyword_match, normalize
from agent_engine.core.runtime_truth import RuntimeTruthReporter
from agent_engine.errors import FallbackExhausted, Unconfigured
from agent_engine.models import (
    FLAG_BOOKING_INTENT_ROUTING,
    FLOW_FLAG_BOOKING_INTENT,
    BookingPlan,
    CompanyConfig,
    Decision,
    Outcome,
    RouteDecision,
)
from agent_engine.prompts import get_system_prompt
from agent_engine.services.cache import LRUCache
from agent_engine.services.config_loader import CompanyConfigLoader
from agent_engine.services.config_store import ConfigStore, JsonFileConfigStore
from agent_engine.services.metrics import MetricsClient, metrics

logger = logging.getLogger(__name__)

GENERIC_ESCALATION_ANSWER = (
    "I'm not able to answer that right now. "
    "Let me connect you with a member of our team who can help."
)
ESCALATION_SOURCE = "engine_fallback"


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """The state that flows through the graph for one turn.

    ``reasons`` uses an ``operator.add`` reducer so each node can append
    its own notes without overwriting earlier ones.
    """

    company: CompanyConfig
    text: str
    flags: dict[str, bool]
    top_score: float
    top_entry_id: str | None
    top_answer: str | None
    gate_decision: Decision | None
    decision: Decision
    outcome: Outcome
    answer_text: str | None
    source: str
    confidence_score: float
    provider_id: str | None
    booking: BookingPlan | None
    reasons: Annotated[list[str], operator.add]


def is_booking_turn(config: CompanyConfig, text: str, flags: Mapping[str, bool]) -> bool:
    """Booking-intent detection; off unless the company opts in."""
    if not config.flag(FLAG_BOOKING_INTENT_ROUTING):
        return False
    if flags.get(FLOW_FLAG_BOOKING_INTENT) is True:
        return True
    keywords = config.booking_contract.intent_keywords
    return bool(keywords) and keyword_match(normalize(text), keywords) > 0.0


# ── Node factories ───────────────────────────────────────────────────


def _make_match_node(matcher: Matcher):
    def match_node(state: TurnState) -> dict:
        matches = matcher.match(state["company"], state["text"])
        if not matches:
            return {"top_score": 0.0, "top_entry_id": None, "top_answer": None}
        top = matches[0]
        return {"top_score": top.score, "top_entry_id": top.entry.id, "top_answer": top.entry.answer}

    return match_node


def gate_node(state: TurnState) -> dict:
    config = state["company"]
    try:
        decision = decide_for(config, state["top_score"])
    except Unconfigured as exc:
        logger.warning("Gate: %s", exc)
        return {"gate_decision": None, "decision": Decision.ESCALATE, "reasons": [str(exc)]}
    logger.debug(
        "Gate: %s score=%.3f → %s", config.company_id, state["top_score"], decision.value,
    )
    return {"gate_decision": decision, "decision": decision}


def accept_node(state: TurnState) -> dict:
    return {
        "outcome": Outcome.ANSWERED_FROM_KNOWLEDGE,
        "answer_text": state["top_answer"],
        "source": f"knowledge:{state['top_entry_id']}",
        "confidence_score": state["top_score"],
    }


def _make_fallback_node(chain: FallbackChain):
    async def fallback_node(state: TurnState) -> dict:
        config = state["company"]
        try:
            answer = await chain.generate(
                config.company_id,
                config.providers,
                state["text"],
                policy=config.fallback_policy,
                system_prompt=get_system_prompt(config),
                generation=config.generation,
            )
        except FallbackExhausted as exc:
            return {
                "decision": Decision.ESCALATE,
                "reasons": [str(exc)] + [str(f) for f in exc.failures],
            }
        return {
            "outcome": Outcome.ANSWERED_FROM_MODEL,
            "answer_text": answer.text,
            "source": f"model:{answer.provider_id}",
            "confidence_score": answer.confidence,
            "provider_id": answer.provider_id,
            "reasons": [str(f) for f in answer.failures],
        }

    return fallback_node


def escalate_node(state: TurnState) -> dict:
    config = state["company"]
    return {
        "decision": Decision.ESCALATE,
        "outcome": Outcome.ESCALATED,
        "answer_text": config.escalation_message or GENERIC_ESCALATION_ANSWER,
        "source": ESCALATION_SOURCE,
        "confidence_score": state.get("top_score", 0.0),
    }


def _make_booking_node(loader: CompanyConfigLoader):
    def booking_node(state: TurnState) -> dict:
        config = state["company"]
        if not is_booking_turn(config, state["text"], state["flags"]):
            return {"booking": None}

        preview = loader.compiled_preview(config, state["flags"]) if config.has_v2_contract else None
        source = select_booking_source(config, preview)
        logger.info("Booking: %s turn uses %s", config.company_id, source.kind)

        if isinstance(source, BookingNotConfigured):
            return {
                "booking": BookingPlan(source=source.kind),
                "reasons": [f"booking not configured: {source.reason}"],
            }
        digest = source.preview.digest if isinstance(source, CompiledV2Booking) else None
        return {
            "booking": BookingPlan(
                source=source.kind,
                slot_ids=tuple(slot.id for slot in source.slots),
                preview_digest=digest,
            )
        }

    return booking_node


# ── Conditional edges ────────────────────────────────────────────────


def route_by_decision(state: TurnState) -> str:
    decision = state.get("decision", Decision.ESCALATE)
    if decision == Decision.ACCEPT:
        return "accept"
    if decision == Decision.DEGRADE:
        return "fallback"
    return "escalate"


def after_fallback(state: TurnState) -> str:
    if state.get("outcome") == Outcome.ANSWERED_FROM_MODEL:
        return "plan_booking"
    return "escalate"


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(matcher: Matcher, chain: FallbackChain, loader: CompanyConfigLoader):
    """Build and compile the per-turn routing graph.

    Returns a compiled graph that can be invoked with:
        await graph.ainvoke({"company": config, "text": "...", "flags": {}, "reasons": []})
    """
    graph = StateGraph(TurnState)

    graph.add_node("match", _make_match_node(matcher))
    graph.add_node("gate", gate_node)
    graph.add_node("accept", accept_node)
    graph.add_node("fallback", _make_fallback_node(chain))
    graph.add_node("escalate", escalate_node)
    graph.add_node("plan_booking", _make_booking_node(loader))

    graph.set_entry_point("match")
    graph.add_edge("match", "gate")
    graph.add_conditional_edges(
        "gate",
        route_by_decision,
        {"accept": "accept", "fallback": "fallback", "escalate": "escalate"},
    )
    graph.add_edge("accept", "plan_booking")
    graph.add_conditional_edges(
        "fallback", after_fallback, {"plan_booking": "plan_booking", "escalate": "escalate"},
    )
    graph.add_edge("escalate", "plan_booking")
    graph.add_edge("plan_booking", END)

    return graph.compile()


class DecisionEngine:
    """Everything one process needs to route turns for many companies."""

    def __init__(
        self,
        loader: CompanyConfigLoader,
        *,
        matcher: Matcher | None = None,
        chain: FallbackChain | None = None,
        metrics_client: MetricsClient | None = None,
    ) -> None:
        self.loader = loader
        self.matcher = matcher or KnowledgeMatcher()
        self.metrics = metrics_client or metrics
        self.chain = chain or FallbackChain(metrics_client=self.metrics)
        self.reporter = RuntimeTruthReporter(loader)
        self.flow_states = FlowStateStore()
        self._graph = create_turn_graph(self.matcher, self.chain, loader)

    async def route(
        self,
        company_id: str,
        text: str,
        flags: Mapping[str, bool] | None = None,
        *,
        conversation_id: str | None = None,
    ) -> RouteDecision:
        """Route one turn.  Raises ``ConfigMissing``; everything else escalates.

        With a *conversation_id* the given flags are merged into that
        conversation's stored flag set and the merged set is used.
        """
        t0 = time.perf_counter()
        config = self.loader.load(company_id)

        if conversation_id is not None:
            merged = dict(self.flow_states.get(company_id, conversation_id).apply_many(flags or {}))
        else:
            merged = dict(flags or {})

        state = await self._graph.ainvoke(
            {"company": config, "text": text, "flags": merged, "reasons": []}
        )
        elapsed = (time.perf_counter() - t0) * 1000

        decision = RouteDecision(
            decision=state["decision"],
            gate_decision=state.get("gate_decision"),
            outcome=state["outcome"],
            answer_text=state.get("answer_text"),
            source=state["source"],
            confidence_score=state["confidence_score"],
            provider_id=state.get("provider_id"),
            latency_ms=round(elapsed, 3),
            booking=state.get("booking"),
            reasons=tuple(state.get("reasons", [])),
        )
        self.metrics.record_decision(company_id, decision.outcome.value, latency_ms=elapsed)
        logger.info(
            "Route: %s generation %d → %s via %s (score=%.3f, %.0fms)",
            company_id, config.generation, decision.decision.value,
            decision.source, decision.confidence_score, elapsed,
        )
        return decision


def create_decision_engine(
    store: ConfigStore | None = None,
    *,
    cache: LRUCache | None = None,
    metrics_client: MetricsClient | None = None,
    chain: FallbackChain | None = None,
) -> DecisionEngine:
    """Build a ``DecisionEngine`` backed by ``COMPANY_CONFIG_DIR`` by default."""
    loader = CompanyConfigLoader(
        store or JsonFileConfigStore(COMPANY_CONFIG_DIR),
        cache=cache or LRUCache(max_bytes=CONFIG_CACHE_MAX_BYTES),
    )
    engine = DecisionEngine(loader, chain=chain, metrics_client=metrics_client)
    logger.debug("Decision engine ready (config dir: %s)", COMPANY_CONFIG_DIR)
    return engine
