"""Event emission and reads over the append-only event store.

Business modules call `emit_event` after a mutation commits; the insight rules
and the context builder read events back newest first.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from erpinsight.errors import ValidationError
from erpinsight.models.event import Event, EventCreate, module_for_entity_type
from erpinsight.models.constants import MAX_EVENT_LIMIT
from erpinsight.database.event_repository import EventRepository
from erpinsight.observability.metrics import MetricsRegistry, metrics as default_metrics

logger = logging.getLogger(__name__)

EventInput = Union[EventCreate, Mapping[str, Any]]


def _validate(event: EventInput) -> EventCreate:
    if isinstance(event, EventCreate):
        return event
    try:
        return EventCreate.model_validate(dict(event))
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid event ({fields})") from e
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid event: {e}") from e


def clamp_limit(limit: Optional[int], maximum: int = MAX_EVENT_LIMIT) -> int:
    if limit is None:
        return maximum
    return max(1, min(int(limit), maximum))


def emit_event(db: Session, event: EventInput, metrics: Optional[MetricsRegistry] = None) -> int:
    """Validate and append one event; returns its id.

    Raises:
        ValidationError: event_type, entity_type or entity_id is missing or invalid
        StorageError: the append failed (not retried)
    """
    metrics = metrics or default_metrics
    valid = _validate(event)
    module = module_for_entity_type(valid.entity_type)
    event_id = EventRepository(db).append(valid, module)
    metrics.increment_counter("events_emitted", {"module": module, "event_type": valid.event_type})
    logger.info(f"Event {event_id} emitted: {valid.event_type} {valid.entity_type}#{valid.entity_id}")
    return event_id


def emit_events(db: Session, events: Iterable[EventInput], metrics: Optional[MetricsRegistry] = None) -> List[int]:
    """Append a batch atomically: every event is stored, or none is.

    Raises:
        ValidationError: naming the index of the first invalid event
        StorageError: the batch write failed and was rolled back
    """
    metrics = metrics or default_metrics
    validated = []
    for index, event in enumerate(events):
        try:
            valid = _validate(event)
        except ValidationError as e:
            raise ValidationError(f"Event at index {index} is invalid: {e}") from e
        validated.append((valid, module_for_entity_type(valid.entity_type)))
    if not validated:
        return []

    ids = EventRepository(db).append_many(validated)
    for valid, module in validated:
        metrics.increment_counter("events_emitted", {"module": module, "event_type": valid.event_type})
    logger.info(f"Emitted batch of {len(ids)} events")
    return ids


def get_recent_events(db: Session, limit: Optional[int] = 50, module: Optional[str] = None) -> List[Event]:
    """Newest first; `limit` is clamped to [1, MAX_EVENT_LIMIT]."""
    return EventRepository(db).get_recent(clamp_limit(limit), module)


def get_events_for_entity(db: Session, entity_type: str, entity_id: int, limit: int = 10) -> List[Event]:
    return EventRepository(db).get_for_entity(entity_type, entity_id, clamp_limit(limit))


def count_events_since(db: Session, since: datetime) -> int:
    return EventRepository(db).count_since(since)


# Helpers for business modules building event payloads

def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value") and not isinstance(value, (int, float, str)):
        return value.value
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    # Decimal and other numerics
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


def create_event_payload(entity: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """Pick `fields` from a mapping or object into a JSON-safe payload.

    Missing fields are skipped.
    """
    payload: Dict[str, Any] = {}
    for field in fields:
        if isinstance(entity, Mapping):
            if field not in entity:
                continue
            value = entity[field]
        else:
            if not hasattr(entity, field):
                continue
            value = getattr(entity, field)
        payload[field] = _json_safe(value)
    return payload


def check_stock_level(current_stock: float, minimum_stock: float) -> str:
    """Classify stock as 'critical', 'low' or 'normal'."""
    current = float(current_stock or 0)
    minimum = float(minimum_stock or 0)
    if current <= 0:
        return "critical"
    if minimum > 0 and current <= minimum * 0.5:
        return "critical"
    if minimum > 0 and current <= minimum:
        return "low"
    return "normal"


def check_expiration_status(expiration_date: Union[date, datetime], today: Optional[date] = None,
                            days_threshold: int = 30) -> str:
    """Classify an expiry date as 'expired', 'expiring_soon' or 'ok'."""
    if isinstance(expiration_date, datetime):
        expiration_date = expiration_date.date()
    today = today or date.today()
    if isinstance(today, datetime):
        today = today.date()
    days_left = (expiration_date - today).days
    if days_left <= 0:
        return "expired"
    if days_left <= days_threshold:
        return "expiring_soon"
    return "ok"
