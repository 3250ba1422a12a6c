"""Repository for actions and their decision history."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError

from erpinsight.errors import StorageError
from erpinsight.models.action import Action, ActionStatus
from erpinsight.database.models import ActionDB, ActionApprovalDB, enum_to_value

logger = logging.getLogger(__name__)


class ActionRepository:
    """Repository for action database operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, action_type: str, title: str, target_module: str, target_mutation: str,
               payload: Dict[str, Any], description: Optional[str] = None,
               insight_id: Optional[int] = None, conversation_id: Optional[int] = None,
               created_by: Optional[str] = None) -> Action:
        """Create a new suggested action."""
        try:
            row = ActionDB(
                insight_id=insight_id,
                conversation_id=conversation_id,
                action_type=action_type,
                title=title,
                description=description,
                target_module=target_module,
                target_mutation=target_mutation,
                payload=dict(payload or {}),
                status=ActionStatus.SUGGESTED.value,
                suggested_at=datetime.utcnow(),
                created_by=created_by,
                version=0,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Created action {row.id}: {title[:50]}")
            return row.to_pydantic()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create action {action_type}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to create action: {type(e).__name__}") from e

    def get(self, action_id: int) -> Optional[Action]:
        row = self.db.query(ActionDB).filter(ActionDB.id == action_id).first()
        if row is None:
            return None
        # Another session may have moved the row since this session loaded it.
        self.db.refresh(row)
        return row.to_pydantic()

    def claim(self, action_id: int, from_status: str, expected_version: int,
              to_status: str, values: Optional[Dict[str, Any]] = None) -> bool:
        """Conditionally move an action to `to_status` without committing.

        The row stays locked until the caller commits through `record_decision`
        or rolls back. Returns False (after rolling back) when the action is no
        longer at (status, version).
        """
        update = {
            ActionDB.status: enum_to_value(to_status),
            ActionDB.version: expected_version + 1,
        }
        for key, value in (values or {}).items():
            update[getattr(ActionDB, key)] = value
        try:
            updated = self.db.query(ActionDB).filter(
                ActionDB.id == action_id,
                ActionDB.status == enum_to_value(from_status),
                ActionDB.version == expected_version,
            ).update(update, synchronize_session=False)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to claim action {action_id}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to transition action: {type(e).__name__}") from e
        if not updated:
            self.db.rollback()
            return False
        return True

    def record_decision(self, action_id: int, user_id: str, decision: str,
                        reason: Optional[str] = None) -> None:
        """Add a decision history row and commit the open transaction."""
        try:
            self.db.add(ActionApprovalDB(
                action_id=action_id,
                user_id=user_id,
                decision=enum_to_value(decision),
                reason=reason,
                created_at=datetime.utcnow(),
            ))
            self.db.commit()
            logger.debug(f"Action {action_id}: -> {enum_to_value(decision)}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to transition action {action_id}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to transition action: {type(e).__name__}") from e

    def transition(self, action_id: int, from_status: str, expected_version: int,
                   to_status: str, user_id: str, values: Optional[Dict[str, Any]] = None,
                   reason: Optional[str] = None) -> bool:
        """Move an action between states if it is still at (status, version).

        The state change and its decision history row commit together. Returns
        False when another writer got there first.
        """
        if not self.claim(action_id, from_status, expected_version, to_status, values):
            return False
        self.record_decision(action_id, user_id, to_status, reason)
        return True

    def get_decisions(self, action_id: int) -> List[Dict[str, Any]]:
        rows = self.db.query(ActionApprovalDB).filter(
            ActionApprovalDB.action_id == action_id,
        ).order_by(ActionApprovalDB.id).all()
        return [
            {
                "user_id": row.user_id,
                "decision": row.decision,
                "reason": row.reason,
                "created_at": row.created_at,
            }
            for row in rows
        ]

    def list_actions(self, status: Optional[str] = None, limit: int = 50) -> List[Action]:
        """List actions newest first."""
        query = self.db.query(ActionDB)
        if status:
            query = query.filter(ActionDB.status == status)
        rows = query.order_by(desc(ActionDB.suggested_at), desc(ActionDB.id)).limit(limit).all()
        return [row.to_pydantic() for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(ActionDB.status, func.count(ActionDB.id)).group_by(ActionDB.status).all()
        return {status: count for status, count in rows}
