"""Builds the redacted, size-bounded snapshot handed to the assistant.

Read-only: nothing here writes to the database.
"""

import json
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from erpinsight.models.constants import (
    CHARS_PER_TOKEN,
    DEFAULT_CONTEXT_MAX_CHARS,
    MAX_CONTEXT_EVENTS,
    MAX_CONTEXT_INSIGHTS,
)
from erpinsight.models.insight import InsightStatus
from erpinsight.database.erp_repository import ErpRepository
from erpinsight.database.event_repository import EventRepository
from erpinsight.database.insight_repository import InsightRepository
from erpinsight.security.redaction import redact_sensitive_object

logger = logging.getLogger(__name__)

FINANCIAL_MODULES = {"financeiro", "pagamentos"}


class ContextOptions(BaseModel):
    include_summary: bool = True
    include_events: bool = True
    include_insights: bool = True
    max_events: int = Field(20, ge=1)
    max_insights: int = Field(MAX_CONTEXT_INSIGHTS, ge=1)
    max_chars: int = Field(DEFAULT_CONTEXT_MAX_CHARS, ge=256)
    module: Optional[str] = None
    scope: str = Field("full", description="'full', or 'production' to leave out financial data")


class AssistantContext(BaseModel):
    summary: Dict[str, Any] = Field(default_factory=dict)
    events: List[Dict[str, Any]] = Field(default_factory=list)
    insights: List[Dict[str, Any]] = Field(default_factory=list)
    token_estimate: int = 0
    generated_at: datetime
    truncated: bool = False


def get_system_summary(db: Session, now: Optional[datetime] = None, scope: str = "full") -> Dict[str, Any]:
    """Headline counts across the ERP modules."""
    now = now or datetime.utcnow()
    erp = ErpRepository(db)
    summary: Dict[str, Any] = {
        "low_stock_items": erp.low_stock_items(),
        "open_non_conformities": erp.open_non_conformities(),
        "pending_purchase_requests": erp.pending_purchase_requests(),
        "active_insights": InsightRepository(db).count_active_by_severity(now),
    }
    if scope == "full":
        summary["pending_producer_payables"] = erp.pending_producer_payables()
        summary["overdue_payables"] = erp.overdue_payables(now)
    return summary


def get_recent_events(db: Session, n: int = 20, module: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest first, at most MAX_CONTEXT_EVENTS."""
    n = max(1, min(int(n), MAX_CONTEXT_EVENTS))
    return [
        {
            "id": event.id,
            "event_type": event.event_type,
            "module": event.module,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "payload": event.payload,
            "created_at": event.created_at.isoformat(),
        }
        for event in EventRepository(db).get_recent(n, module)
    ]


def get_active_insights(db: Session, now: Optional[datetime] = None,
                        limit: int = MAX_CONTEXT_INSIGHTS) -> List[Dict[str, Any]]:
    """Active insights, most severe first, at most MAX_CONTEXT_INSIGHTS."""
    limit = max(1, min(int(limit), MAX_CONTEXT_INSIGHTS))
    insights = InsightRepository(db).list_insights(
        now or datetime.utcnow(), status=InsightStatus.ACTIVE.value, limit=limit,
    )
    return [
        {
            "id": insight.id,
            "type": insight.insight_type,
            "severity": insight.severity,
            "title": insight.title,
            "summary": insight.summary,
            "module": insight.module,
            "generated_at": insight.generated_at.isoformat(),
        }
        for insight in insights
    ]


def _serialized_size(summary: Dict[str, Any], events: List[Dict[str, Any]], insights: List[Dict[str, Any]]) -> int:
    return len(json.dumps({"summary": summary, "events": events, "insights": insights},
                          ensure_ascii=False, default=str))


def build_context(db: Session, options: Optional[ContextOptions] = None,
                  now: Optional[datetime] = None) -> AssistantContext:
    """Assemble summary, events and insights, redacted and trimmed to `max_chars`.

    When over budget, the oldest events go first, then the least severe insights.
    """
    options = options or ContextOptions()
    now = now or datetime.utcnow()

    summary = get_system_summary(db, now, options.scope) if options.include_summary else {}
    events = get_recent_events(db, options.max_events, options.module) if options.include_events else []
    insights = get_active_insights(db, now, options.max_insights) if options.include_insights else []

    if options.scope != "full":
        events = [e for e in events if e["module"] not in FINANCIAL_MODULES]
        insights = [i for i in insights if i["module"] not in FINANCIAL_MODULES]

    summary = redact_sensitive_object(summary)
    events = redact_sensitive_object(events)
    insights = redact_sensitive_object(insights)

    truncated = False
    size = _serialized_size(summary, events, insights)
    while size > options.max_chars and (events or insights):
        # Events are newest first and insights most severe first, so pop from the end.
        if events:
            events.pop()
        else:
            insights.pop()
        truncated = True
        size = _serialized_size(summary, events, insights)
    if size > options.max_chars:
        truncated = True

    if truncated:
        logger.debug(f"Context trimmed to {size} chars ({len(events)} events, {len(insights)} insights)")

    return AssistantContext(
        summary=summary,
        events=events,
        insights=insights,
        token_estimate=math.ceil(size / CHARS_PER_TOKEN),
        generated_at=now,
        truncated=truncated,
    )


def format_context_for_prompt(context: AssistantContext) -> str:
    sections = [
        "=== CONTEXTO DO SISTEMA ERP ===",
        f"Gerado em: {context.generated_at.isoformat()}",
    ]
    if context.summary:
        sections.append("\n--- RESUMOS ---")
        sections.append(json.dumps(context.summary, indent=2, ensure_ascii=False, default=str))
    if context.events:
        sections.append("\n--- EVENTOS RECENTES ---")
        sections.append(json.dumps(context.events, indent=2, ensure_ascii=False, default=str))
    if context.insights:
        sections.append("\n--- INSIGHTS ATIVOS ---")
        sections.append(json.dumps(context.insights, indent=2, ensure_ascii=False, default=str))
    sections.append("\n=== FIM DO CONTEXTO ===")
    return "\n".join(sections)
