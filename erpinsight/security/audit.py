"""Audit logging for security-relevant operations."""

import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from erpinsight.models.audit import AuditLogEntry, AuditLogFilters
from erpinsight.database.audit_repository import AuditRepository
from erpinsight.observability.metrics import ErrorRecord, MetricsRegistry, metrics as default_metrics
from erpinsight.security.redaction import redact_sensitive_data, redact_sensitive_object

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes redacted audit entries. A failed write never blocks the caller."""

    def __init__(self, session_factory: Callable[[], Session],
                 metrics: Optional[MetricsRegistry] = None):
        self.session_factory = session_factory
        self.metrics = metrics or default_metrics

    def log_audit(self, entry: AuditLogEntry) -> bool:
        """Append an entry. Returns False if the write failed."""
        try:
            safe = entry.model_copy(update={
                "details": redact_sensitive_object(entry.details),
                "error_message": redact_sensitive_data(entry.error_message) if entry.error_message else None,
            })
            db = self.session_factory()
            try:
                AuditRepository(db).append(safe)
            finally:
                db.close()
            return True
        except Exception as e:
            logger.error(f"Failed to write audit entry {entry.resource}.{entry.action}: {type(e).__name__}: {str(e)}")
            self.metrics.log_error(ErrorRecord(
                type="audit_log_failure",
                message=f"{type(e).__name__}: {str(e)}",
                user_id=entry.user_id,
                context={"resource": entry.resource, "action": entry.action},
            ))
            return False

    def get_audit_logs(self, filters: Optional[AuditLogFilters] = None) -> List[AuditLogEntry]:
        db = self.session_factory()
        try:
            return AuditRepository(db).query(filters or AuditLogFilters())
        finally:
            db.close()

    def is_reachable(self) -> bool:
        db = self.session_factory()
        try:
            return AuditRepository(db).ping()
        finally:
            db.close()
