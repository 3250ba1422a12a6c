"""Data models for the ERP insight engine."""

from erpinsight.models.event import Event, EventCreate, EventType
from erpinsight.models.insight import (
    Insight,
    InsightSeverity,
    InsightStatus,
    InsightCandidate,
    ActionProposal,
    InsightCheckResult,
    InsightRunReport,
)
from erpinsight.models.action import Action, ActionStatus, ActionDecision
from erpinsight.models.feature_flag import FeatureFlag
from erpinsight.models.audit import AuditLogEntry, AuditLogFilters
from erpinsight.models.notification import NotificationConfig, Recipient
from erpinsight.models.user import Principal, Role

__all__ = [
    "Event",
    "EventCreate",
    "EventType",
    "Insight",
    "InsightSeverity",
    "InsightStatus",
    "InsightCandidate",
    "ActionProposal",
    "InsightCheckResult",
    "InsightRunReport",
    "Action",
    "ActionStatus",
    "ActionDecision",
    "FeatureFlag",
    "AuditLogEntry",
    "AuditLogFilters",
    "NotificationConfig",
    "Recipient",
    "Principal",
    "Role",
]
