"""Create insight engine tables

Revision ID: 4a9e1c2b7d10
Revises:
Create Date: 2026-10-16
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4a9e1c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "ai_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("module", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("producer_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_events_event_type"), "ai_events", ["event_type"], unique=False)
    op.create_index(op.f("ix_ai_events_module"), "ai_events", ["module"], unique=False)
    op.create_index(op.f("ix_ai_events_created_at"), "ai_events", ["created_at"], unique=False)
    op.create_index("ix_ai_events_entity", "ai_events", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "ai_insights",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("insight_type", sa.String(length=100), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("evidence_ids", sa.JSON(), nullable=False),
        sa.Column("module", sa.String(length=50), nullable=True),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(), nullable=True),
        sa.Column("dismissed_by", sa.String(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_insights_insight_type"), "ai_insights", ["insight_type"], unique=False)
    op.create_index(op.f("ix_ai_insights_fingerprint"), "ai_insights", ["fingerprint"], unique=False)
    op.create_index("ix_ai_insights_status_severity", "ai_insights", ["status", "severity"], unique=False)
    op.create_index(
        "uq_ai_insights_active_fingerprint",
        "ai_insights",
        ["fingerprint"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "ai_actions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("insight_id", sa.Integer(), nullable=True),
        sa.Column("conversation_id", sa.Integer(), nullable=True),
        sa.Column("action_type", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_module", sa.String(length=50), nullable=False),
        sa.Column("target_mutation", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("suggested_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("decided_by", sa.String(), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["insight_id"], ["ai_insights.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_actions_insight_id"), "ai_actions", ["insight_id"], unique=False)
    op.create_index(op.f("ix_ai_actions_status"), "ai_actions", ["status"], unique=False)

    op.create_table(
        "ai_action_approvals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("action_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("decision", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["action_id"], ["ai_actions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_action_approvals_action_id"), "ai_action_approvals", ["action_id"], unique=False)

    op.create_table(
        "ai_feature_flags",
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("enabled_globally", sa.Boolean(), nullable=False),
        sa.Column("rollout_percentage", sa.Integer(), nullable=False),
        sa.Column("allowed_roles", sa.JSON(), nullable=False),
        sa.Column("allowed_user_ids", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "ai_audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("user_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("resource", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_audit_log_user_id"), "ai_audit_log", ["user_id"], unique=False)
    op.create_index(op.f("ix_ai_audit_log_resource"), "ai_audit_log", ["resource"], unique=False)
    op.create_index(op.f("ix_ai_audit_log_timestamp"), "ai_audit_log", ["timestamp"], unique=False)

    op.create_table(
        "ai_config",
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "ai_conversations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_conversations_user_id"), "ai_conversations", ["user_id"], unique=False)

    op.create_table(
        "ai_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["ai_conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_ai_messages_conversation_id"), "ai_messages", ["conversation_id"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_ai_messages_conversation_id"), table_name="ai_messages")
    op.drop_table("ai_messages")
    op.drop_index(op.f("ix_ai_conversations_user_id"), table_name="ai_conversations")
    op.drop_table("ai_conversations")
    op.drop_table("ai_config")
    op.drop_index(op.f("ix_ai_audit_log_timestamp"), table_name="ai_audit_log")
    op.drop_index(op.f("ix_ai_audit_log_resource"), table_name="ai_audit_log")
    op.drop_index(op.f("ix_ai_audit_log_user_id"), table_name="ai_audit_log")
    op.drop_table("ai_audit_log")
    op.drop_table("ai_feature_flags")
    op.drop_index(op.f("ix_ai_action_approvals_action_id"), table_name="ai_action_approvals")
    op.drop_table("ai_action_approvals")
    op.drop_index(op.f("ix_ai_actions_status"), table_name="ai_actions")
    op.drop_index(op.f("ix_ai_actions_insight_id"), table_name="ai_actions")
    op.drop_table("ai_actions")
    op.drop_index("uq_ai_insights_active_fingerprint", table_name="ai_insights")
    op.drop_index("ix_ai_insights_status_severity", table_name="ai_insights")
    op.drop_index(op.f("ix_ai_insights_fingerprint"), table_name="ai_insights")
    op.drop_index(op.f("ix_ai_insights_insight_type"), table_name="ai_insights")
    op.drop_table("ai_insights")
    op.drop_index("ix_ai_events_entity", table_name="ai_events")
    op.drop_index(op.f("ix_ai_events_created_at"), table_name="ai_events")
    op.drop_index(op.f("ix_ai_events_module"), table_name="ai_events")
    op.drop_index(op.f("ix_ai_events_event_type"), table_name="ai_events")
    op.drop_table("ai_events")
