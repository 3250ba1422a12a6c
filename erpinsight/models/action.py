"""Action data model and its state machine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from pydantic import BaseModel, Field


class ActionStatus(str, Enum):
    """Action lifecycle status."""
    SUGGESTED = "suggested"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


# Legal transitions. Terminal states map to an empty set; a failed action is
# retried by proposing a new one.
ACTION_TRANSITIONS: Dict[ActionStatus, FrozenSet[ActionStatus]] = {
    ActionStatus.SUGGESTED: frozenset({ActionStatus.APPROVED, ActionStatus.REJECTED}),
    ActionStatus.APPROVED: frozenset({ActionStatus.EXECUTED, ActionStatus.FAILED}),
    ActionStatus.REJECTED: frozenset(),
    ActionStatus.EXECUTED: frozenset(),
    ActionStatus.FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Check whether an action may move from `current` to `target`."""
    try:
        return ActionStatus(target) in ACTION_TRANSITIONS[ActionStatus(current)]
    except ValueError:
        return False


class ActionDecision(str, Enum):
    """Decision recorded in the approval history."""
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


class Action(BaseModel):
    """A proposed remediation that needs human approval before it runs."""

    id: int
    insight_id: Optional[int] = None
    conversation_id: Optional[int] = None
    action_type: str
    title: str
    description: Optional[str] = None
    target_module: str
    target_mutation: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = Field(ActionStatus.SUGGESTED)
    suggested_at: datetime
    created_by: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    executed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    version: int = 0

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
