"""CLI entry point for the decision & booking engine.

A terminal loop over the routing call, for trying a company configuration
during development.  For production, use the FastAPI server
(agent_engine/server.py).

Usage:
    python -m agent_engine.main --company acme             # chat loop
    python -m agent_engine.main --company acme --debug     # verbose logs
    python -m agent_engine.main --company acme --report    # runtime truth as JSON

In the chat loop, ``/flag name=true|false`` sets a conversation flag and
``new`` starts a new conversation.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid

from agent_engine.engine import DecisionEngine, create_decision_engine
from agent_engine.errors import ConfigMissing
from agent_engine.models import RouteDecision

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("agent_engine").setLevel(logging.DEBUG if debug else logging.INFO)


def parse_flag_command(line: str) -> tuple[str, bool]:
    """Parse ``/flag name=value``.  Raises ``ValueError`` on bad input."""
    _, _, assignment = line.partition(" ")
    name, sep, raw = assignment.strip().partition("=")
    value = raw.strip().lower()
    if not sep or not name.strip() or value not in _TRUE | _FALSE:
        raise ValueError("usage: /flag name=true|false")
    return name.strip(), value in _TRUE


def format_decision(decision: RouteDecision) -> str:
    lines = [
        f"[{decision.decision.value} via {decision.source} "
        f"score={decision.confidence_score:.2f} {decision.latency_ms:.0f}ms]",
        decision.answer_text or "",
    ]
    if decision.booking is not None:
        slots = ", ".join(decision.booking.slot_ids) or "none"
        lines.append(f"[booking: {decision.booking.source} slots={slots}]")
    return "\n".join(lines)


async def _chat_loop(engine: DecisionEngine, company_id: str) -> None:
    conversation_id = str(uuid.uuid4())
    logger.info("Started conversation %s for %s", conversation_id, company_id)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break
        if user_input.lower() == "new":
            engine.flow_states.discard(company_id, conversation_id)
            conversation_id = str(uuid.uuid4())
            print(f"\n>> New conversation started: {conversation_id[:8]}...\n")
            continue

        if user_input.startswith("/flag"):
            try:
                name, value = parse_flag_command(user_input)
            except ValueError as exc:
                print(f"\n{exc}\n")
                continue
            flags = dict(engine.flow_states.get(company_id, conversation_id).apply(name, value))
            print(f"\n>> flags: {flags}\n")
            continue

        try:
            decision = await engine.route(company_id, user_input, conversation_id=conversation_id)
        except ConfigMissing as exc:
            print(f"\n{exc}\n")
            break
        print(f"\n{format_decision(decision)}\n")


def main() -> int:
    """Run the CLI; returns the process exit code."""
    parser = argparse.ArgumentParser(description="Agent decision engine CLI")
    parser.add_argument("--company", required=True, help="Company id to route turns for")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including provider calls",
    )
    parser.add_argument(
        "--report", action="store_true",
        help="Print the runtime truth report as JSON and exit",
    )
    args = parser.parse_args()

    _configure_logging(debug=args.debug)
    engine = create_decision_engine()

    if args.report:
        try:
            health = engine.reporter.report(args.company)
        except ConfigMissing as exc:
            print(exc, file=sys.stderr)
            return 1
        print(health.model_dump_json(by_alias=True, indent=2))
        return 0

    print("\n" + "=" * 60)
    print(f"  Agent Decision Engine - {args.company}")
    print("=" * 60)
    print("  Type a message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation,")
    print("            '/flag name=true|false' to set a flow flag.")
    print("=" * 60 + "\n")

    asyncio.run(_chat_loop(engine, args.company))
    return 0


if __name__ == "__main__":
    sys.exit(main())
