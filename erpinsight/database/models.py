"""SQLAlchemy database models for the insight engine tables."""

from datetime import datetime
from typing import Union, TypeVar, Type
from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Text, ForeignKey, Index, text

from erpinsight.database.database import Base
from erpinsight.models.event import Event
from erpinsight.models.insight import Insight, InsightSeverity, InsightStatus
from erpinsight.models.action import Action, ActionStatus
from erpinsight.models.feature_flag import FeatureFlag
from erpinsight.models.audit import AuditLogEntry

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string)."""
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default."""
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


class EventDB(Base):
    """Append-only domain event row."""

    __tablename__ = "ai_events"
    __table_args__ = (
        Index("ix_ai_events_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False, index=True)
    module = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(Integer, nullable=False)
    producer_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    user_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_pydantic(self) -> Event:
        return Event(
            id=self.id,
            event_type=self.event_type,
            module=self.module,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            producer_id=self.producer_id,
            payload=self.payload or {},
            user_id=self.user_id,
            created_at=self.created_at,
        )


class InsightDB(Base):
    """Insight row. At most one active row per fingerprint."""

    __tablename__ = "ai_insights"
    __table_args__ = (
        Index(
            "uq_ai_insights_active_fingerprint",
            "fingerprint",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_ai_insights_status_severity", "status", "severity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    insight_type = Column(String(100), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default=InsightSeverity.INFO.value)
    title = Column(String(255), nullable=False)
    summary = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    evidence_ids = Column(JSON, nullable=False, default=list)
    module = Column(String(50), nullable=True)
    entity_type = Column(String(100), nullable=True)
    entity_id = Column(Integer, nullable=True)
    fingerprint = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=InsightStatus.ACTIVE.value)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    dismissed_by = Column(String, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    def to_pydantic(self) -> Insight:
        return Insight(
            id=self.id,
            insight_type=self.insight_type,
            severity=value_to_enum(self.severity, InsightSeverity, InsightSeverity.INFO),
            title=self.title,
            summary=self.summary,
            details=self.details or {},
            evidence_ids=list(self.evidence_ids or []),
            module=self.module,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            fingerprint=self.fingerprint,
            status=value_to_enum(self.status, InsightStatus, InsightStatus.ACTIVE),
            generated_at=self.generated_at,
            updated_at=self.updated_at,
            dismissed_at=self.dismissed_at,
            dismissed_by=self.dismissed_by,
            resolved_at=self.resolved_at,
            expires_at=self.expires_at,
        )


class ActionDB(Base):
    """Proposed remediation row; `version` guards concurrent transitions."""

    __tablename__ = "ai_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    insight_id = Column(Integer, ForeignKey("ai_insights.id", ondelete="SET NULL"), nullable=True, index=True)
    conversation_id = Column(Integer, nullable=True)
    action_type = Column(String(100), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_module = Column(String(50), nullable=False)
    target_mutation = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=ActionStatus.SUGGESTED.value, index=True)
    suggested_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String, nullable=True)
    decided_by = Column(String, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    def to_pydantic(self) -> Action:
        return Action(
            id=self.id,
            insight_id=self.insight_id,
            conversation_id=self.conversation_id,
            action_type=self.action_type,
            title=self.title,
            description=self.description,
            target_module=self.target_module,
            target_mutation=self.target_mutation,
            payload=self.payload or {},
            status=value_to_enum(self.status, ActionStatus, ActionStatus.SUGGESTED),
            suggested_at=self.suggested_at,
            created_by=self.created_by,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            rejection_reason=self.rejection_reason,
            executed_at=self.executed_at,
            failure_reason=self.failure_reason,
            version=self.version or 0,
        )


class ActionApprovalDB(Base):
    """Decision history for actions."""

    __tablename__ = "ai_action_approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_id = Column(Integer, ForeignKey("ai_actions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    decision = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class FeatureFlagDB(Base):
    """Persisted feature flag state."""

    __tablename__ = "ai_feature_flags"

    name = Column(String(100), primary_key=True)
    enabled_globally = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Integer, nullable=False, default=0)
    allowed_roles = Column(JSON, nullable=False, default=list)
    allowed_user_ids = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_pydantic(self) -> FeatureFlag:
        return FeatureFlag(
            name=self.name,
            enabled_globally=bool(self.enabled_globally),
            rollout_percentage=self.rollout_percentage or 0,
            allowed_roles=list(self.allowed_roles or []),
            allowed_user_ids=list(self.allowed_user_ids or []),
        )

    @classmethod
    def from_pydantic(cls, flag: FeatureFlag) -> "FeatureFlagDB":
        return cls(
            name=flag.name,
            enabled_globally=flag.enabled_globally,
            rollout_percentage=flag.rollout_percentage,
            allowed_roles=list(flag.allowed_roles),
            allowed_user_ids=list(flag.allowed_user_ids),
        )


class AuditLogDB(Base):
    """Write-once audit trail row."""

    __tablename__ = "ai_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    user_role = Column(String(20), nullable=False)
    action = Column(String(50), nullable=False)
    resource = Column(String(50), nullable=False, index=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_pydantic(self) -> AuditLogEntry:
        return AuditLogEntry(
            id=self.id,
            user_id=self.user_id,
            user_role=self.user_role,
            action=self.action,
            resource=self.resource,
            resource_id=self.resource_id,
            details=self.details or {},
            success=bool(self.success),
            error_message=self.error_message,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_pydantic(cls, entry: AuditLogEntry) -> "AuditLogDB":
        return cls(
            user_id=entry.user_id,
            user_role=entry.user_role,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            details=entry.details,
            success=entry.success,
            error_message=entry.error_message,
            timestamp=entry.timestamp,
        )


class ConfigDB(Base):
    """Key/value configuration row."""

    __tablename__ = "ai_config"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=False, default=dict)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ConversationDB(Base):
    """Assistant conversation header, counted by stats."""

    __tablename__ = "ai_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class MessageDB(Base):
    """Assistant message, counted by stats."""

    __tablename__ = "ai_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("ai_conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
