"""Insight data model."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class InsightSeverity(str, Enum):
    """Insight severity enumeration."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# Higher rank sorts first
SEVERITY_RANK: Dict[str, int] = {
    InsightSeverity.CRITICAL.value: 3,
    InsightSeverity.WARNING.value: 2,
    InsightSeverity.INFO.value: 1,
}


class InsightStatus(str, Enum):
    """Insight lifecycle status."""
    ACTIVE = "active"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


class Insight(BaseModel):
    """A deduplicated finding produced by a rule check."""

    id: int = Field(..., description="Insight identifier")
    insight_type: str = Field(..., description="Rule-specific insight type, e.g. 'stock_critical'")
    severity: InsightSeverity = Field(..., description="Severity")
    title: str
    summary: str
    details: Dict[str, Any] = Field(default_factory=dict)
    evidence_ids: List[int] = Field(default_factory=list, description="Supporting event ids")
    module: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    fingerprint: str = Field(..., description="Hash of (insight_type, entity_type, entity_id)")
    status: InsightStatus = Field(InsightStatus.ACTIVE)
    generated_at: datetime
    updated_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    dismissed_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class ActionProposal(BaseModel):
    """Remediation a rule suggests alongside an insight."""

    action_type: str
    title: str
    description: Optional[str] = None
    target_module: str
    target_mutation: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class InsightCandidate(BaseModel):
    """A rule finding before it is persisted."""

    insight_type: str
    severity: InsightSeverity
    title: str
    summary: str
    details: Dict[str, Any] = Field(default_factory=dict)
    module: Optional[str] = None
    entity_type: str
    entity_id: int
    evidence_ids: List[int] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    proposal: Optional[ActionProposal] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class InsightCheckResult:
    """Counters returned by a rule check."""

    def __init__(self, created: int = 0, skipped: int = 0, errors: Optional[List[str]] = None):
        self.created = created
        self.skipped = skipped
        self.errors: List[str] = list(errors or [])

    def merge(self, other: "InsightCheckResult") -> "InsightCheckResult":
        return InsightCheckResult(
            created=self.created + other.created,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created, "skipped": self.skipped, "errors": list(self.errors)}

    def __repr__(self) -> str:
        return f"InsightCheckResult(created={self.created}, skipped={self.skipped}, errors={len(self.errors)})"


class InsightRunReport:
    """Per-rule results of a full check run plus merged totals."""

    def __init__(self):
        self.results: Dict[str, InsightCheckResult] = {}
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def totals(self) -> InsightCheckResult:
        total = InsightCheckResult()
        for result in self.results.values():
            total = total.merge(result)
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "totals": self.totals.to_dict(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
