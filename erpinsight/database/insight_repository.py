"""Repository for insight persistence."""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import and_, case, desc, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from erpinsight.errors import NotFound, StorageError
from erpinsight.models.insight import Insight, InsightCandidate, InsightStatus, SEVERITY_RANK
from erpinsight.database.models import InsightDB, enum_to_value

logger = logging.getLogger(__name__)


def _not_expired(now: datetime):
    return or_(InsightDB.expires_at.is_(None), InsightDB.expires_at > now)


class InsightRepository:
    """Repository for insight database operations.

    An active row whose `expires_at` has passed is treated as dismissed by
    every read; `expire_stale` makes that durable.
    """

    def __init__(self, db: Session):
        self.db = db

    def _active_row(self, fingerprint: str) -> Optional[InsightDB]:
        return self.db.query(InsightDB).filter(
            InsightDB.fingerprint == fingerprint,
            InsightDB.status == InsightStatus.ACTIVE.value,
        ).first()

    def get(self, insight_id: int, now: Optional[datetime] = None) -> Optional[Insight]:
        row = self.db.query(InsightDB).filter(InsightDB.id == insight_id).first()
        if not row:
            return None
        insight = row.to_pydantic()
        now = now or datetime.utcnow()
        if insight.status == InsightStatus.ACTIVE.value and insight.is_expired(now):
            insight = insight.model_copy(update={"status": InsightStatus.DISMISSED.value})
        return insight

    def get_active_by_fingerprint(self, fingerprint: str, now: Optional[datetime] = None) -> Optional[Insight]:
        row = self._active_row(fingerprint)
        if not row:
            return None
        insight = row.to_pydantic()
        if insight.is_expired(now or datetime.utcnow()):
            return None
        return insight

    @staticmethod
    def _apply(row: InsightDB, candidate: InsightCandidate, evidence_ids: List[int], now: datetime) -> None:
        row.severity = enum_to_value(candidate.severity)
        row.title = candidate.title
        row.summary = candidate.summary
        details = dict(candidate.details)
        notified_at = (row.details or {}).get("notified_at")
        if notified_at:
            details["notified_at"] = notified_at
        row.details = details
        row.evidence_ids = list(evidence_ids)
        row.module = candidate.module
        row.expires_at = candidate.expires_at
        row.updated_at = now

    def upsert(self, candidate: InsightCandidate, fingerprint: str,
               evidence_ids: List[int], now: datetime) -> Tuple[Insight, bool]:
        """Insert a new active insight or refresh the active one in place.

        Returns the stored insight and True when a row was created.
        """
        try:
            row = self._active_row(fingerprint)
            if row is not None and row.expires_at is not None and row.expires_at <= now:
                row.status = InsightStatus.DISMISSED.value
                row.dismissed_at = now
                row.dismissed_by = "system:expired"
                self.db.flush()
                row = None

            if row is not None:
                merged = list(dict.fromkeys(list(row.evidence_ids or []) + list(evidence_ids)))
                self._apply(row, candidate, merged, now)
                self.db.commit()
                self.db.refresh(row)
                logger.debug(f"Refreshed insight {row.id} ({candidate.insight_type})")
                return row.to_pydantic(), False

            row = InsightDB(
                insight_type=candidate.insight_type,
                entity_type=candidate.entity_type,
                entity_id=candidate.entity_id,
                fingerprint=fingerprint,
                status=InsightStatus.ACTIVE.value,
                generated_at=now,
            )
            self._apply(row, candidate, evidence_ids, now)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Created insight {row.id} ({candidate.insight_type})")
            return row.to_pydantic(), True
        except IntegrityError:
            # Lost an insert race for the same fingerprint: refresh the winner.
            self.db.rollback()
            row = self._active_row(fingerprint)
            if row is None:
                raise StorageError(f"Insight {fingerprint[:12]} conflicted but no active row exists")
            try:
                merged = list(dict.fromkeys(list(row.evidence_ids or []) + list(evidence_ids)))
                self._apply(row, candidate, merged, now)
                self.db.commit()
                self.db.refresh(row)
                return row.to_pydantic(), False
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to refresh insight {fingerprint[:12]}: {type(e).__name__}: {str(e)}")
                raise StorageError(f"Failed to refresh insight: {type(e).__name__}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to upsert insight {candidate.insight_type}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to upsert insight: {type(e).__name__}") from e

    def _transition(self, insight_id: int, values: Dict, now: datetime) -> bool:
        try:
            updated = self.db.query(InsightDB).filter(
                InsightDB.id == insight_id,
                InsightDB.status == InsightStatus.ACTIVE.value,
                _not_expired(now),
            ).update(values, synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update insight {insight_id}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to update insight: {type(e).__name__}") from e

        if updated:
            return True
        exists = self.db.query(InsightDB.id).filter(InsightDB.id == insight_id).first()
        if not exists:
            raise NotFound(f"Insight {insight_id} not found")
        return False

    def dismiss(self, insight_id: int, by_user_id: str, now: datetime) -> bool:
        """Move an active insight to dismissed. False if it is no longer active."""
        return self._transition(insight_id, {
            InsightDB.status: InsightStatus.DISMISSED.value,
            InsightDB.dismissed_at: now,
            InsightDB.dismissed_by: by_user_id,
            InsightDB.updated_at: now,
        }, now)

    def resolve(self, insight_id: int, now: datetime) -> bool:
        """Move an active insight to resolved. False if it is no longer active."""
        return self._transition(insight_id, {
            InsightDB.status: InsightStatus.RESOLVED.value,
            InsightDB.resolved_at: now,
            InsightDB.updated_at: now,
        }, now)

    def expire_stale(self, now: datetime) -> int:
        """Dismiss every active insight whose expiry has passed."""
        try:
            count = self.db.query(InsightDB).filter(
                InsightDB.status == InsightStatus.ACTIVE.value,
                InsightDB.expires_at.isnot(None),
                InsightDB.expires_at <= now,
            ).update({
                InsightDB.status: InsightStatus.DISMISSED.value,
                InsightDB.dismissed_at: now,
                InsightDB.dismissed_by: "system:expired",
                InsightDB.updated_at: now,
            }, synchronize_session=False)
            self.db.commit()
            if count:
                logger.debug(f"Expired {count} stale insights")
            return count
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to expire insights: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to expire insights: {type(e).__name__}") from e

    def list_insights(self, now: datetime, status: Optional[str] = None,
                      severity: Optional[str] = None, limit: int = 50) -> List[Insight]:
        """List insights by severity rank (critical first), then newest."""
        rank = case(
            *[(InsightDB.severity == name, value) for name, value in SEVERITY_RANK.items()],
            else_=0,
        )
        query = self.db.query(InsightDB)
        if status == InsightStatus.ACTIVE.value:
            query = query.filter(InsightDB.status == status, _not_expired(now))
        elif status == InsightStatus.DISMISSED.value:
            # Lazily expired rows read as dismissed.
            query = query.filter(or_(
                InsightDB.status == status,
                and_(
                    InsightDB.status == InsightStatus.ACTIVE.value,
                    InsightDB.expires_at.isnot(None),
                    InsightDB.expires_at <= now,
                ),
            ))
        elif status:
            query = query.filter(InsightDB.status == status)
        if severity:
            query = query.filter(InsightDB.severity == severity)
        rows = query.order_by(desc(rank), desc(InsightDB.generated_at), desc(InsightDB.id)).limit(limit).all()

        insights = []
        for row in rows:
            insight = row.to_pydantic()
            if insight.status == InsightStatus.ACTIVE.value and insight.is_expired(now):
                insight = insight.model_copy(update={"status": InsightStatus.DISMISSED.value})
            insights.append(insight)
        return insights

    def count_active(self, now: datetime) -> int:
        return self.db.query(func.count(InsightDB.id)).filter(
            InsightDB.status == InsightStatus.ACTIVE.value,
            _not_expired(now),
        ).scalar() or 0

    def count_active_by_severity(self, now: datetime) -> Dict[str, int]:
        rows = self.db.query(InsightDB.severity, func.count(InsightDB.id)).filter(
            InsightDB.status == InsightStatus.ACTIVE.value,
            _not_expired(now),
        ).group_by(InsightDB.severity).all()
        counts = {name: 0 for name in SEVERITY_RANK}
        for severity, count in rows:
            counts[severity] = count
        return counts

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(InsightDB.status, func.count(InsightDB.id)).group_by(InsightDB.status).all()
        return {status: count for status, count in rows}

    def count_by_type(self, now: datetime) -> Dict[str, int]:
        rows = self.db.query(InsightDB.insight_type, func.count(InsightDB.id)).filter(
            InsightDB.status == InsightStatus.ACTIVE.value,
            _not_expired(now),
        ).group_by(InsightDB.insight_type).all()
        return {insight_type: count for insight_type, count in rows}

    def list_active_critical(self, now: datetime) -> List[Insight]:
        rows = self.db.query(InsightDB).filter(
            InsightDB.status == InsightStatus.ACTIVE.value,
            InsightDB.severity == "critical",
            _not_expired(now),
        ).order_by(desc(InsightDB.generated_at)).all()
        return [row.to_pydantic() for row in rows]

    def mark_notified(self, insight_ids: List[int], now: datetime) -> None:
        """Record in `details.notified_at` that a critical alert went out."""
        if not insight_ids:
            return
        try:
            rows = self.db.query(InsightDB).filter(InsightDB.id.in_(insight_ids)).all()
            for row in rows:
                details = dict(row.details or {})
                details["notified_at"] = now.isoformat()
                row.details = details
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark insights notified: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to mark insights notified: {type(e).__name__}") from e
