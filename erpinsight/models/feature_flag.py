"""Feature flag data model."""

from typing import List
from pydantic import BaseModel, Field


class FeatureFlag(BaseModel):
    """Runtime-mutable feature flag."""

    name: str = Field(..., description="Flag name, e.g. 'copilot_enabled'")
    enabled_globally: bool = Field(False, description="On for everyone when true")
    rollout_percentage: int = Field(0, ge=0, le=100, description="Share of user buckets enabled")
    allowed_roles: List[str] = Field(default_factory=list)
    allowed_user_ids: List[str] = Field(default_factory=list)
