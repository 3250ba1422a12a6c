"""Request/response models for the HTTP API."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from erpinsight.models.action import Action
from erpinsight.models.event import Event, EventCreate
from erpinsight.models.insight import Insight


class EmitEventResponse(BaseModel):
    event_id: int


class EmitEventsRequest(BaseModel):
    events: List[EventCreate] = Field(..., min_length=1)


class EmitEventsResponse(BaseModel):
    event_ids: List[int]


class EventListResponse(BaseModel):
    events: List[Event]
    count: int


class InsightListResponse(BaseModel):
    insights: List[Insight]
    count: int


class TransitionResponse(BaseModel):
    """Result of a dismiss/resolve; success is False when the insight was not active."""
    id: int
    success: bool


class InsightRunResponse(BaseModel):
    created: int
    skipped: int
    errors: List[str]
    results: Dict[str, Dict[str, Any]]


class ActionListResponse(BaseModel):
    actions: List[Action]
    count: int


class RejectActionRequest(BaseModel):
    reason: str = Field("", description="Why the action was rejected; required")


class StatsResponse(BaseModel):
    """Caller's conversation counts plus engine-wide insight and event counts."""
    conversations: int
    messages: int
    active_insights: int
    recent_events: int


class AccessResponse(BaseModel):
    """Flag states and permissions for the caller."""
    user_id: str
    role: str
    features: Dict[str, bool]
    permissions: List[str]


class FeatureUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class FeatureRoleRequest(BaseModel):
    role: str = Field(..., min_length=1)


class RolloutRequest(BaseModel):
    percentage: int


class FlagUpdateResponse(BaseModel):
    name: str
    success: bool

