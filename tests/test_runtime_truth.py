"""Tests for the runtime truth report."""

from __future__ import annotations

import pytest

from agent_engine.core.booking import compile_booking_contract
from agent_engine.core.runtime_truth import RuntimeTruthReporter, build_report
from agent_engine.errors import ConfigMissing
from agent_engine.models import HealthGrade
from agent_engine.services.cache import LRUCache
from agent_engine.services.config_loader import CompanyConfigLoader
from agent_engine.services.config_store import InMemoryConfigStore


def _report(config):
    preview = (
        compile_booking_contract(config.slot_library, config.slot_groups, {})
        if config.has_v2_contract
        else None
    )
    return build_report(config, preview)


def _areas(health) -> dict[str, str]:
    return {r.area: r.severity for r in health.reasons}


class TestGrades:
    def test_fully_configured_company_is_green(self, company_config):
        health = _report(company_config())
        assert health.health_grade is HealthGrade.GREEN
        assert health.reasons == ()
        assert health.qa_entry_count == 2
        assert health.provider_ids == ("primary",)

    def test_enabled_contract_with_latent_missing_ref_is_red(self, company_config):
        config = company_config(
            bookingContract={"enabled": True},
            slotGroups=[
                {"id": "base", "slots": ["name", "phone"]},
                {"id": "commercial", "slots": ["business_name", "po_number"], "when": {"commercial": True}},
            ],
        )
        health = _report(config)
        assert health.health_grade is HealthGrade.RED
        assert _areas(health)["bookingContractV2"] == "ERROR"
        assert health.booking.latent_missing_slot_refs == ("po_number",)
        assert "po_number" in health.reasons[0].fix

    def test_enabled_contract_with_empty_active_slots_is_red(self, company_config):
        config = company_config(
            bookingContract={"enabled": True},
            slotGroups=[{"id": "commercial", "slots": ["business_name"], "when": {"commercial": True}}],
        )
        health = _report(config)
        assert health.health_grade is HealthGrade.RED
        assert "compiled active slots is empty" in health.reasons[0].message

    def test_enabled_without_library_is_red(self, company_config):
        health = _report(company_config(bookingContract={"enabled": True}, slotLibrary=[]))
        assert health.health_grade is HealthGrade.RED

    def test_no_qa_entries_is_red(self, company_config):
        health = _report(company_config(qaEntries=[]))
        assert health.health_grade is HealthGrade.RED
        assert _areas(health)["scenarios"] == "ERROR"

    def test_missing_thresholds_is_red(self, company_config):
        health = _report(company_config(thresholds=None))
        assert _areas(health)["thresholds"] == "ERROR"

    def test_no_providers_is_red(self, company_config):
        assert _report(company_config(providers=[])).health_grade is HealthGrade.RED

    def test_no_templates_is_yellow(self, company_config):
        health = _report(company_config(templateIds=[]))
        assert health.health_grade is HealthGrade.YELLOW
        assert _areas(health) == {"templates": "WARNING"}

    def test_unclean_dark_contract_is_yellow(self, company_config):
        config = company_config(slotGroups=[{"id": "base", "slots": ["name", "po_number"]}])
        health = _report(config)
        assert health.health_grade is HealthGrade.YELLOW
        assert "po_number" in health.reasons[0].message

    def test_no_booking_path_is_yellow(self, company_config):
        config = company_config(slotLibrary=[], slotGroups=[], legacyBookingSlots=[])
        health = _report(config)
        assert _areas(health) == {"booking": "WARNING"}


class TestReporter:
    def test_report_reflects_current_generation(self, company_document):
        store = InMemoryConfigStore({"acme": company_document()})
        loader = CompanyConfigLoader(store, cache=LRUCache())
        reporter = RuntimeTruthReporter(loader)

        assert reporter.report("acme").health_grade is HealthGrade.GREEN

        loader.write("acme", company_document(qaEntries=[]))
        health = reporter.report("acme")
        assert health.generation == 1
        assert health.health_grade is HealthGrade.RED

    def test_report_includes_base_preview(self, company_document):
        loader = CompanyConfigLoader(InMemoryConfigStore({"acme": company_document()}))
        preview = RuntimeTruthReporter(loader).report("acme").booking.compiled_preview
        assert preview.active_slot_ids == ("name", "phone", "address")

    def test_report_counts_memoized_previews(self, company_document):
        loader = CompanyConfigLoader(InMemoryConfigStore({"acme": company_document()}))
        loader.compiled_preview(loader.load("acme"), {"commercial": True})

        health = RuntimeTruthReporter(loader).report("acme")

        assert health.cached_preview_count == 2

    def test_unknown_company(self):
        reporter = RuntimeTruthReporter(CompanyConfigLoader(InMemoryConfigStore()))
        with pytest.raises(ConfigMissing):
            reporter.report("nobody")
