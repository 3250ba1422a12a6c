"""Tests for the assistant context builder."""

import json
import math

import pytest

from erpinsight.engine.context import (
    ContextOptions,
    _serialized_size,
    build_context,
    format_context_for_prompt,
    get_active_insights,
    get_recent_events,
    get_system_summary,
)
from erpinsight.engine.events import emit_event
from erpinsight.engine.insights import run_all_insight_checks
from erpinsight.models.constants import MAX_CONTEXT_EVENTS


def _emit(db, metrics, entity_type, entity_id, payload=None, event_type=None):
    return emit_event(db, {
        "event_type": event_type or f"{entity_type}.created",
        "entity_type": entity_type,
        "entity_id": entity_id,
        "payload": payload or {},
    }, metrics)


class TestSummary:
    """Test the headline counts."""

    def test_full_scope(self, db_session, erp_data, now):
        summary = get_system_summary(db_session, now)
        assert summary["low_stock_items"] == {"low": 1, "critical": 1}
        assert summary["open_non_conformities"] == 1
        assert summary["pending_purchase_requests"] == 1
        assert summary["pending_producer_payables"] == {"count": 1, "total_value": 1500.0}
        assert summary["overdue_payables"] == {"count": 1, "total_value": 820.0}
        assert summary["active_insights"] == {"critical": 0, "warning": 0, "info": 0}

    def test_production_scope_has_no_financials(self, db_session, erp_data, now):
        summary = get_system_summary(db_session, now, scope="production")
        assert "pending_producer_payables" not in summary
        assert "overdue_payables" not in summary


class TestBuildContext:
    """Test context assembly."""

    def test_contains_sections(self, db_session, erp_data, now, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        _emit(db_session, metrics_registry, "coconut_load", 1)

        context = build_context(db_session, now=now)
        assert context.truncated is False
        assert len(context.events) == 1
        assert len(context.insights) == 6
        assert context.insights[0]["severity"] == "critical"
        assert context.summary["active_insights"]["critical"] == 3
        size = _serialized_size(context.summary, context.events, context.insights)
        assert context.token_estimate == math.ceil(size / 4)

    def test_sensitive_data_is_redacted(self, db_session, now, metrics_registry):
        _emit(db_session, metrics_registry, "producer", 3, payload={
            "name": "Maria",
            "cpf": "123.456.789-09",
            "note": "ligar (11) 98765-4321",
        })

        context = build_context(db_session, now=now)
        payload = context.events[0]["payload"]
        assert payload["name"] == "Maria"
        assert payload["cpf"] == "***REDACTED***"
        assert "98765" not in payload["note"]
        assert "123.456.789-09" not in format_context_for_prompt(context)

    def test_production_scope_drops_financial_modules(self, db_session, erp_data, now, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        _emit(db_session, metrics_registry, "payable", 1)
        _emit(db_session, metrics_registry, "financial_entry", 1)
        _emit(db_session, metrics_registry, "production_entry", 1)

        context = build_context(db_session, ContextOptions(scope="production"), now=now)
        assert [e["module"] for e in context.events] == ["producao"]
        assert {i["module"] for i in context.insights}.isdisjoint({"financeiro", "pagamentos"})
        assert len(context.insights) == 4

    def test_module_filter(self, db_session, now, metrics_registry):
        _emit(db_session, metrics_registry, "nc", 1)
        _emit(db_session, metrics_registry, "coconut_load", 2)
        context = build_context(db_session, ContextOptions(module="qualidade"), now=now)
        assert [e["module"] for e in context.events] == ["qualidade"]

    def test_sections_can_be_left_out(self, db_session, erp_data, now, metrics_registry):
        _emit(db_session, metrics_registry, "nc", 1)
        context = build_context(db_session, ContextOptions(include_summary=False, include_events=False), now=now)
        assert context.summary == {}
        assert context.events == []

    def test_trims_oldest_events_to_budget(self, db_session, now, metrics_registry):
        ids = [
            _emit(db_session, metrics_registry, "coconut_load", i, payload={"notes": "x" * 200})
            for i in range(20)
        ]

        context = build_context(db_session, ContextOptions(max_chars=2000, include_summary=False), now=now)
        assert context.truncated is True
        assert 0 < len(context.events) < 20
        # Newest survive.
        assert context.events[0]["id"] == ids[-1]
        assert _serialized_size(context.summary, context.events, context.insights) <= 2000

    def test_max_chars_has_a_floor(self):
        with pytest.raises(ValueError):
            ContextOptions(max_chars=10)


class TestContextHelpers:
    """Test the section helpers."""

    def test_recent_events_are_capped(self, db_session, metrics_registry):
        for i in range(MAX_CONTEXT_EVENTS + 5):
            _emit(db_session, metrics_registry, "coconut_load", i)
        assert len(get_recent_events(db_session, 1000)) == MAX_CONTEXT_EVENTS

    def test_active_insights_only(self, db_session, erp_data, now, metrics_registry):
        run_all_insight_checks(db_session, now=now, metrics=metrics_registry)
        insights = get_active_insights(db_session, now, limit=2)
        assert [i["severity"] for i in insights] == ["critical", "critical"]

    def test_prompt_format(self, db_session, erp_data, now, metrics_registry):
        _emit(db_session, metrics_registry, "nc", 1)
        text = format_context_for_prompt(build_context(db_session, now=now))
        assert text.startswith("=== CONTEXTO DO SISTEMA ERP ===")
        assert "--- RESUMOS ---" in text
        assert "--- EVENTOS RECENTES ---" in text
        assert "--- INSIGHTS ATIVOS ---" not in text
        assert text.endswith("=== FIM DO CONTEXTO ===")
        summary_json = text.split("--- RESUMOS ---\n")[1].split("\n\n--- EVENTOS")[0]
        assert json.loads(summary_json)["open_non_conformities"] == 1
