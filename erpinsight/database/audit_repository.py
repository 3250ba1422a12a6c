"""Repository for the write-once audit log."""

import logging
from typing import List
from sqlalchemy.orm import Session
from sqlalchemy import desc

from erpinsight.models.audit import AuditLogEntry, AuditLogFilters
from erpinsight.database.models import AuditLogDB

logger = logging.getLogger(__name__)


class AuditRepository:
    """Repository for audit log operations. Rows are never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        try:
            row = AuditLogDB.from_pydantic(entry)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Audit {entry.resource}.{entry.action} by {entry.user_id} success={entry.success}")
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to append audit entry: {type(e).__name__}: {str(e)}")
            raise

    def query(self, filters: AuditLogFilters) -> List[AuditLogEntry]:
        """Newest entries first, narrowed by the given filters."""
        query = self.db.query(AuditLogDB)
        if filters.user_id:
            query = query.filter(AuditLogDB.user_id == filters.user_id)
        if filters.resource:
            query = query.filter(AuditLogDB.resource == filters.resource)
        if filters.action:
            query = query.filter(AuditLogDB.action == filters.action)
        if filters.success is not None:
            query = query.filter(AuditLogDB.success == filters.success)
        if filters.since:
            query = query.filter(AuditLogDB.timestamp >= filters.since)
        rows = query.order_by(desc(AuditLogDB.timestamp), desc(AuditLogDB.id)).limit(filters.limit).all()
        return [row.to_pydantic() for row in rows]

    def ping(self) -> bool:
        """Check that the audit table is reachable."""
        self.db.query(AuditLogDB.id).limit(1).all()
        return True
