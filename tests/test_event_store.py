"""Tests for event emission and the append-only event store."""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from erpinsight.database.models import EventDB
from erpinsight.engine.events import (
    check_expiration_status,
    check_stock_level,
    clamp_limit,
    count_events_since,
    create_event_payload,
    emit_event,
    emit_events,
    get_events_for_entity,
    get_recent_events,
)
from erpinsight.errors import StorageError, ValidationError
from erpinsight.models.constants import MAX_EVENT_LIMIT
from erpinsight.models.event import EventCreate, EventType, module_for_entity_type


def _event(entity_id=1, event_type=EventType.COCONUT_LOAD_CREATED, entity_type="coconut_load", **extra):
    return EventCreate(event_type=event_type, entity_type=entity_type, entity_id=entity_id, **extra)


class TestEmitEvent:
    """Test single event emission."""

    def test_emitted_event_is_newest(self, db_session, metrics_registry):
        """An emitted event appears first in the recent events."""
        emit_event(db_session, _event(entity_id=99, entity_type="producer", event_type="producer.created"),
                   metrics_registry)
        event_id = emit_event(db_session, _event(entity_id=1), metrics_registry)

        recent = get_recent_events(db_session, 10)
        assert recent[0].id == event_id
        assert recent[0].event_type == "coconut_load.created"
        assert recent[0].entity_id == 1
        assert recent[0].module == "recebimento"

    def test_ids_are_increasing(self, db_session, metrics_registry):
        first = emit_event(db_session, _event(entity_id=1), metrics_registry)
        second = emit_event(db_session, _event(entity_id=2), metrics_registry)
        assert second > first

    def test_accepts_mapping_input(self, db_session, metrics_registry):
        event_id = emit_event(db_session, {
            "event_type": "nc.created",
            "entity_type": "nc",
            "entity_id": 5,
            "payload": {"area": "Envase"},
            "user_id": "operator-1",
        }, metrics_registry)

        stored = get_recent_events(db_session, 1)[0]
        assert stored.id == event_id
        assert stored.module == "qualidade"
        assert stored.payload == {"area": "Envase"}
        assert stored.user_id == "operator-1"

    @pytest.mark.parametrize("bad", [
        {"event_type": "", "entity_type": "nc", "entity_id": 1},
        {"event_type": "nc.created", "entity_type": "   ", "entity_id": 1},
        {"event_type": "nc.created", "entity_type": "nc"},
        {"event_type": "nc.created", "entity_type": "nc", "entity_id": -1},
        {"entity_type": "nc", "entity_id": 1},
    ])
    def test_invalid_event_rejected(self, db_session, metrics_registry, bad):
        with pytest.raises(ValidationError):
            emit_event(db_session, bad, metrics_registry)
        assert db_session.query(EventDB).count() == 0

    def test_storage_failure_raises_storage_error(self, db_session, metrics_registry):
        with patch.object(db_session, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk"))):
            with pytest.raises(StorageError):
                emit_event(db_session, _event(), metrics_registry)

    def test_emit_counts_metric(self, db_session, metrics_registry):
        emit_event(db_session, _event(), metrics_registry)
        assert metrics_registry.get_metric_sum("events_emitted", {"module": "recebimento"}) == 1


class TestEmitEvents:
    """Test batch emission."""

    def test_batch_returns_ids_in_order(self, db_session, metrics_registry):
        ids = emit_events(db_session, [_event(entity_id=i) for i in range(3)], metrics_registry)
        assert len(ids) == 3
        assert ids == sorted(ids)
        assert [e.entity_id for e in get_recent_events(db_session, 3)] == [2, 1, 0]

    def test_invalid_event_rejects_whole_batch(self, db_session, metrics_registry):
        batch = [
            _event(entity_id=1),
            {"event_type": "nc.created", "entity_type": "", "entity_id": 2},
            _event(entity_id=3),
        ]
        with pytest.raises(ValidationError, match="index 1"):
            emit_events(db_session, batch, metrics_registry)
        assert db_session.query(EventDB).count() == 0

    def test_storage_failure_stores_nothing(self, db_session, metrics_registry):
        with patch.object(db_session, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk"))):
            with pytest.raises(StorageError):
                emit_events(db_session, [_event(entity_id=1), _event(entity_id=2)], metrics_registry)
        assert db_session.query(EventDB).count() == 0

    def test_empty_batch(self, db_session, metrics_registry):
        assert emit_events(db_session, [], metrics_registry) == []


class TestEventReads:
    """Test event reads."""

    def test_limit_is_clamped(self):
        assert clamp_limit(0) == 1
        assert clamp_limit(-5) == 1
        assert clamp_limit(10_000) == MAX_EVENT_LIMIT
        assert clamp_limit(None) == MAX_EVENT_LIMIT

    def test_module_filter(self, db_session, metrics_registry):
        emit_event(db_session, _event(entity_id=1), metrics_registry)
        emit_event(db_session, _event(entity_id=2, entity_type="nc", event_type="nc.created"), metrics_registry)

        only_quality = get_recent_events(db_session, 10, module="qualidade")
        assert [e.entity_id for e in only_quality] == [2]

    def test_events_for_entity(self, db_session, metrics_registry):
        emit_event(db_session, _event(entity_id=1), metrics_registry)
        emit_event(db_session, _event(entity_id=2), metrics_registry)
        emit_event(db_session, _event(entity_id=1, event_type=EventType.COCONUT_LOAD_CLOSED), metrics_registry)

        events = get_events_for_entity(db_session, "coconut_load", 1)
        assert [e.event_type for e in events] == ["coconut_load.closed", "coconut_load.created"]

    def test_count_since(self, db_session, metrics_registry):
        emit_event(db_session, _event(), metrics_registry)
        assert count_events_since(db_session, datetime.utcnow() - timedelta(days=30)) == 1
        assert count_events_since(db_session, datetime.utcnow() + timedelta(minutes=1)) == 0


class TestEventHelpers:
    """Test payload and classification helpers used by business modules."""

    def test_module_for_entity_type(self):
        assert module_for_entity_type("warehouse_item") == "almoxarifado"
        assert module_for_entity_type("financial_entry") == "financeiro"
        assert module_for_entity_type("non_conformity") == "qualidade"
        assert module_for_entity_type("something_else") == "sistema"

    def test_create_event_payload(self):
        class Load:
            id = 4
            weight = 1200
            received_at = datetime(2026, 3, 1, 8, 30)

        payload = create_event_payload(Load(), ["id", "weight", "received_at", "missing"])
        assert payload == {"id": 4, "weight": 1200, "received_at": "2026-03-01T08:30:00"}

    def test_create_event_payload_from_mapping(self):
        assert create_event_payload({"a": 1, "b": 2}, ["a", "c"]) == {"a": 1}

    @pytest.mark.parametrize("current,minimum,expected", [
        (0, 100, "critical"),
        (50, 100, "critical"),
        (80, 100, "low"),
        (100, 100, "low"),
        (150, 100, "normal"),
    ])
    def test_check_stock_level(self, current, minimum, expected):
        assert check_stock_level(current, minimum) == expected

    def test_check_expiration_status(self):
        today = datetime(2026, 3, 10).date()
        assert check_expiration_status(datetime(2026, 3, 9), today) == "expired"
        assert check_expiration_status(datetime(2026, 3, 10), today) == "expired"
        assert check_expiration_status(datetime(2026, 3, 20), today) == "expiring_soon"
        assert check_expiration_status(datetime(2026, 6, 1), today) == "ok"
