"""Shared test fixtures for the decision engine test suite."""

from __future__ import annotations

import asyncio
import copy
import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py reads test values on load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")


def _base_document() -> dict:
    return {
        "name": "Acme Plumbing",
        "templateIds": ["hvac-default"],
        "qaEntries": [
            {
                "id": "hours",
                "question": "What are your opening hours?",
                "answer": "We are open 8am to 6pm, Monday to Friday.",
                "keywords": ["hours", "open"],
            },
            {
                "id": "emergency",
                "question": "Do you offer emergency callouts?",
                "answer": "Yes, 24/7 emergency callouts are available.",
                "keywords": ["emergency", "callout", "urgent"],
            },
        ],
        "thresholds": {"accept": 0.8, "escalate": 0.4},
        "providers": [
            {"id": "primary", "kind": "static", "timeoutSeconds": 1.0, "reply": "primary answer"},
        ],
        "fallbackPolicy": {"maxRetriesPerProvider": 1},
        "slotLibrary": [
            {"id": "name", "label": "Name"},
            {"id": "phone", "label": "Phone"},
            {"id": "address", "label": "Address"},
            {"id": "business_name", "label": "Business name"},
        ],
        "slotGroups": [
            {"id": "base", "slots": ["name", "phone", "address"]},
            {"id": "commercial", "slots": ["business_name"], "when": {"commercial": True}},
        ],
        "bookingContract": {"enabled": False, "intentKeywords": ["book", "appointment"]},
        "legacyBookingSlots": [{"id": "name"}, {"id": "phone"}],
    }


@pytest.fixture
def company_document():
    """Factory fixture for company configuration documents (camelCase JSON)."""

    def _make(**overrides) -> dict:
        document = _base_document()
        document.update(copy.deepcopy(overrides))
        return document

    return _make


@pytest.fixture
def company_config(company_document):
    """Factory fixture for parsed ``CompanyConfig`` snapshots."""
    from agent_engine.models import CompanyConfig

    def _make(company_id: str = "acme", **overrides):
        document = company_document(**overrides)
        return CompanyConfig.model_validate({**document, "companyId": company_id})

    return _make


@pytest.fixture
def mock_metrics():
    return MagicMock()


class FakeProvider:
    """Provider double: replies, raises or sleeps on each call in turn."""

    def __init__(self, provider_id: str, *behaviours):
        self.provider_id = provider_id
        self._behaviours = list(behaviours) or ["ok"]
        self.calls = 0

    async def agenerate(self, system_prompt: str, text: str) -> str:
        behaviour = self._behaviours[min(self.calls, len(self._behaviours) - 1)]
        self.calls += 1
        if isinstance(behaviour, BaseException):
            raise behaviour
        if isinstance(behaviour, (int, float)):
            await asyncio.sleep(behaviour)
            return f"{self.provider_id} slow answer"
        return f"{self.provider_id} answer"


@pytest.fixture
def fake_provider():
    return FakeProvider
