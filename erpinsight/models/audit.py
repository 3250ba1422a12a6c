"""Audit log data model."""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class AuditLogEntry(BaseModel):
    """Write-once record of a security-relevant operation."""

    id: Optional[int] = None
    user_id: str = Field(..., description="Acting user")
    user_role: str = Field(..., description="Role of the acting user at the time")
    action: str = Field(..., description="Operation performed, e.g. 'approve'")
    resource: str = Field(..., description="Resource touched, e.g. 'ai_action'")
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AuditLogFilters(BaseModel):
    """Query filters for reading the audit log."""

    user_id: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    success: Optional[bool] = None
    since: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)
