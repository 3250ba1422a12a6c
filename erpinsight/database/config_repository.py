"""Repository for key/value engine configuration."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from erpinsight.database.models import ConfigDB

logger = logging.getLogger(__name__)


class ConfigRepository:
    """Repository for `ai_config` rows."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = self.db.query(ConfigDB).filter(ConfigDB.key == key).first()
        return dict(row.value or {}) if row else None

    def set(self, key: str, value: Dict[str, Any], updated_by: Optional[str] = None) -> None:
        try:
            row = self.db.query(ConfigDB).filter(ConfigDB.key == key).first()
            if row is None:
                row = ConfigDB(key=key, value=value, updated_by=updated_by)
                self.db.add(row)
            else:
                row.value = value
                row.updated_by = updated_by
                row.updated_at = datetime.utcnow()
            self.db.commit()
            logger.debug(f"Saved config {key}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save config {key}: {type(e).__name__}: {str(e)}")
            raise
