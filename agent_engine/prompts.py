"""System prompt for the language-model fallback chain."""

from __future__ import annotations

from datetime import UTC, datetime

from agent_engine.models import CompanyConfig

# Cap on the number of QA pairs injected into the prompt.
MAX_PROMPT_ENTRIES = 40

SYSTEM_PROMPT_TEMPLATE = """You are the AI receptionist for **{company_name}**.

## Current Date & Time
Today is **{current_date}** ({current_day_of_week}). The current time is **{current_time} UTC**.

## Rules
- Answer only from the company knowledge below. Never invent prices, hours or policies.
- If the knowledge does not cover the question, say you are not sure and offer to
  connect the caller with a team member.
- Keep replies short: one or two sentences suitable for a phone call.

## Company Knowledge
{knowledge}
"""


def _format_knowledge(config: CompanyConfig) -> str:
    if not config.qa_entries:
        return "(no knowledge entries configured)"
    lines: list[str] = []
    for entry in config.qa_entries[:MAX_PROMPT_ENTRIES]:
        lines.append(f"Q: {entry.question}")
        lines.append(f"A: {entry.answer}")
        lines.append("")
    return "\n".join(lines).strip()


def get_system_prompt(config: CompanyConfig) -> str:
    """Return the fallback system prompt for one company, stamped with now()."""
    now = datetime.now(UTC)
    return SYSTEM_PROMPT_TEMPLATE.format(
        company_name=config.name or config.company_id,
        current_date=now.strftime("%B %d, %Y"),
        current_day_of_week=now.strftime("%A"),
        current_time=now.strftime("%H:%M"),
        knowledge=_format_knowledge(config),
    )
