"""Agent Decision Engine: per-company routing and booking-contract compilation.

Architecture Overview
=====================

Every inbound turn is routed for exactly one company, using that company's
immutable configuration snapshot:

1. **match** scores the text against the company's QA corpus.
2. **gate** turns the top score into Accept / Degrade / Escalate using the
   company's thresholds (no global defaults).
3. **fallback** asks the company's ordered language-model providers for an
   answer on Degrade, with one bounded time budget per provider.
4. **booking** compiles the company's slot library and slot groups against
   the conversation's flow flags for booking-intent turns.

Routing: match → gate → accept | fallback (→ escalate if exhausted) | escalate → booking

Key Design Decisions
--------------------
- **Snapshots**: a company's configuration is loaded into a frozen pydantic
  model and replaced wholesale on write; compiled booking previews are
  memoized under the same company key prefix and dropped with it.
- **Dark launch**: booking contract V2 stays off per company until its
  ``bookingContract.enabled`` flag is set, and enabling it is rejected
  unless the contract compiles cleanly.
- **Runtime truth**: the health grade (GREEN / YELLOW / RED) is derived on
  demand from the live snapshot, never cached separately.
- **Resilience**: provider retries and timeouts are bounded by the
  company's fallback policy, with a per-provider circuit breaker.
- **Dual Interface**: FastAPI server (production) + CLI loop (development).

Package Structure
-----------------
- ``agent_engine/engine.py``: LangGraph turn graph and ``DecisionEngine``
- ``agent_engine/models.py``: pydantic models for snapshots and decisions
- ``agent_engine/errors.py``: exception hierarchy
- ``agent_engine/config.py``: process configuration from environment variables
- ``agent_engine/prompts.py``: fallback system prompt with QA injection
- ``agent_engine/server.py``: FastAPI application
- ``agent_engine/main.py``: CLI interface
- ``agent_engine/core/``: matcher, gate, fallback chain, booking compiler,
  flow state, runtime truth
- ``agent_engine/services/``: config store/loader, LRU cache, providers, metrics
- ``agent_engine/api/``: FastAPI routes and Pydantic schemas
"""
