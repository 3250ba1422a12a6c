"""Repository for the append-only event store."""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError

from erpinsight.errors import StorageError
from erpinsight.models.event import Event, EventCreate
from erpinsight.database.models import EventDB

logger = logging.getLogger(__name__)


class EventRepository:
    """Repository for event database operations. Rows are never updated."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_row(event: EventCreate, module: str) -> EventDB:
        return EventDB(
            event_type=event.event_type,
            module=module,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            producer_id=event.producer_id,
            payload=event.payload,
            user_id=event.user_id,
            created_at=datetime.utcnow(),
        )

    def append(self, event: EventCreate, module: str) -> int:
        """Append one event and return its id."""
        try:
            row = self._to_row(event, module)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Appended event {row.id}: {event.event_type}")
            return row.id
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to append event {event.event_type}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to append event: {type(e).__name__}") from e

    def append_many(self, events: Sequence[Tuple[EventCreate, str]]) -> List[int]:
        """Append a batch of events in a single transaction."""
        try:
            rows = [self._to_row(event, module) for event, module in events]
            self.db.add_all(rows)
            self.db.flush()
            ids = [row.id for row in rows]
            self.db.commit()
            logger.debug(f"Appended {len(ids)} events")
            return ids
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to append event batch of {len(events)}: {type(e).__name__}: {str(e)}")
            raise StorageError(f"Failed to append event batch: {type(e).__name__}") from e

    def get(self, event_id: int) -> Optional[Event]:
        row = self.db.query(EventDB).filter(EventDB.id == event_id).first()
        return row.to_pydantic() if row else None

    def get_recent(self, limit: int, module: Optional[str] = None) -> List[Event]:
        """Get events newest first."""
        query = self.db.query(EventDB)
        if module:
            query = query.filter(EventDB.module == module)
        rows = query.order_by(desc(EventDB.id)).limit(limit).all()
        return [row.to_pydantic() for row in rows]

    def get_for_entity(self, entity_type: str, entity_id: int, limit: int) -> List[Event]:
        """Get the most recent events about one entity, newest first."""
        rows = self.db.query(EventDB).filter(
            EventDB.entity_type == entity_type,
            EventDB.entity_id == entity_id,
        ).order_by(desc(EventDB.id)).limit(limit).all()
        return [row.to_pydantic() for row in rows]

    def count_since(self, since: datetime) -> int:
        return self.db.query(func.count(EventDB.id)).filter(EventDB.created_at >= since).scalar() or 0
