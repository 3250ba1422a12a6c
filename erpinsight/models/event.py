"""Domain event data model for the insight engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    """Known ERP event types.

    The store accepts any non-empty event type; this enum names the ones the
    ERP modules emit today.
    """
    # Receiving
    COCONUT_LOAD_CREATED = "coconut_load.created"
    COCONUT_LOAD_UPDATED = "coconut_load.updated"
    COCONUT_LOAD_CLOSED = "coconut_load.closed"

    # Producers
    PRODUCER_CREATED = "producer.created"
    PRODUCER_UPDATED = "producer.updated"
    PRODUCER_DEACTIVATED = "producer.deactivated"

    # Producer payments
    PAYABLE_CREATED = "payable.created"
    PAYABLE_APPROVED = "payable.approved"
    PAYABLE_SCHEDULED = "payable.scheduled"
    PAYABLE_PAID = "payable.paid"

    # Production
    PRODUCTION_ENTRY_CREATED = "production_entry.created"
    PRODUCTION_ISSUE_CREATED = "production_issue.created"
    PRODUCTION_ISSUE_RESOLVED = "production_issue.resolved"

    # Warehouse
    WAREHOUSE_MOVEMENT_CREATED = "warehouse_movement.created"
    WAREHOUSE_STOCK_LOW = "warehouse_stock.low"
    WAREHOUSE_STOCK_CRITICAL = "warehouse_stock.critical"

    # Finished goods
    FINISHED_GOODS_MOVEMENT = "finished_goods.movement"
    FINISHED_GOODS_EXPIRING = "finished_goods.expiring"

    # Purchasing
    PURCHASE_REQUEST_CREATED = "purchase_request.created"
    PURCHASE_REQUEST_APPROVED = "purchase_request.approved"
    PURCHASE_REQUEST_REJECTED = "purchase_request.rejected"

    # Finance
    FINANCIAL_ENTRY_CREATED = "financial_entry.created"
    FINANCIAL_ENTRY_PAID = "financial_entry.paid"
    FINANCIAL_ENTRY_OVERDUE = "financial_entry.overdue"

    # Quality
    QUALITY_ANALYSIS_CREATED = "quality_analysis.created"
    NC_CREATED = "nc.created"
    NC_CLOSED = "nc.closed"

    # Users
    USER_LOGIN = "user.login"
    USER_BLOCKED = "user.blocked"


# Entity type prefix -> owning ERP module
EVENT_MODULE_MAP: Dict[str, str] = {
    "coconut": "recebimento",
    "coconut_load": "recebimento",
    "producer": "produtores",
    "payable": "pagamentos",
    "production": "producao",
    "warehouse": "almoxarifado",
    "sku": "estoque_pa",
    "finished": "estoque_pa",
    "purchase": "compras",
    "financial": "financeiro",
    "quality": "qualidade",
    "nc": "qualidade",
    "non_conformity": "qualidade",
    "employee": "rh",
    "user": "seguranca",
}

DEFAULT_EVENT_MODULE = "sistema"


def module_for_entity_type(entity_type: str) -> str:
    """Resolve the ERP module that owns an entity type."""
    if entity_type in EVENT_MODULE_MAP:
        return EVENT_MODULE_MAP[entity_type]
    prefix = entity_type.split("_")[0]
    return EVENT_MODULE_MAP.get(prefix, DEFAULT_EVENT_MODULE)


class EventCreate(BaseModel):
    """Input shape for appending an event."""

    event_type: str = Field(..., description="Dotted event type, e.g. 'coconut_load.created'")
    entity_type: str = Field(..., description="Type of the entity the event is about")
    entity_id: int = Field(..., ge=0, description="ID of the entity the event is about")
    producer_id: Optional[int] = Field(None, description="Related producer, when applicable")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event payload")
    user_id: Optional[str] = Field(None, description="User who triggered the mutation")

    @field_validator("event_type", "entity_type", mode="before")
    @classmethod
    def _require_text(cls, value):
        if isinstance(value, Enum):
            value = value.value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()


class Event(BaseModel):
    """An appended, immutable domain event."""

    id: int = Field(..., description="Monotonic event identifier")
    event_type: str
    module: str
    entity_type: str
    entity_id: int
    producer_id: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    created_at: datetime

    class Config:
        """Pydantic configuration."""
        frozen = True
