"""Repository for persisted feature flags."""

import logging
from typing import List, Optional
from sqlalchemy.orm import Session

from erpinsight.models.feature_flag import FeatureFlag
from erpinsight.database.models import FeatureFlagDB

logger = logging.getLogger(__name__)


class FeatureFlagRepository:
    """Repository for feature flag operations."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, name: str) -> Optional[FeatureFlag]:
        row = self.db.query(FeatureFlagDB).filter(FeatureFlagDB.name == name).first()
        if row is None:
            return None
        self.db.refresh(row)
        return row.to_pydantic()

    def get_all(self) -> List[FeatureFlag]:
        self.db.expire_all()
        rows = self.db.query(FeatureFlagDB).order_by(FeatureFlagDB.name).all()
        return [row.to_pydantic() for row in rows]

    def save(self, flag: FeatureFlag) -> FeatureFlag:
        """Insert or replace a flag."""
        try:
            row = self.db.query(FeatureFlagDB).filter(FeatureFlagDB.name == flag.name).first()
            if row is None:
                row = FeatureFlagDB.from_pydantic(flag)
                self.db.add(row)
            else:
                row.enabled_globally = flag.enabled_globally
                row.rollout_percentage = flag.rollout_percentage
                row.allowed_roles = list(flag.allowed_roles)
                row.allowed_user_ids = list(flag.allowed_user_ids)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Saved feature flag {flag.name}")
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save feature flag {flag.name}: {type(e).__name__}: {str(e)}")
            raise
