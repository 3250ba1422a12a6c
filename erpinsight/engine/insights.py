"""Insight generation, deduplication and lifecycle.

Rule candidates are keyed by a fingerprint of (insight type, entity type,
entity id). A candidate whose fingerprint already has an active insight
refreshes it in place; otherwise a new insight is created. Running the checks
twice against unchanged data therefore creates nothing the second time.
"""

import hashlib
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from erpinsight.errors import EngineError
from erpinsight.models.insight import Insight, InsightCandidate, InsightCheckResult, InsightRunReport
from erpinsight.models.constants import DEFAULT_INSIGHT_LIMIT, MAX_INSIGHT_LIMIT, RELATED_EVENT_LOOKBACK
from erpinsight.database.insight_repository import InsightRepository
from erpinsight.database.event_repository import EventRepository
from erpinsight.engine.rules import Rule, RuleRegistry, default_rules
from erpinsight.engine.actions import propose_action
from erpinsight.observability.metrics import ErrorRecord, MetricsRegistry, metrics as default_metrics

logger = logging.getLogger(__name__)


def compute_fingerprint(insight_type: str, entity_type: str, entity_id: int) -> str:
    return hashlib.sha256(f"{insight_type}|{entity_type}|{entity_id}".encode("utf-8")).hexdigest()


def persist_candidates(db: Session, candidates: List[InsightCandidate], now: datetime,
                       metrics: Optional[MetricsRegistry] = None) -> InsightCheckResult:
    """Upsert candidates by fingerprint; a failing candidate does not stop the rest."""
    metrics = metrics or default_metrics
    insights = InsightRepository(db)
    events = EventRepository(db)
    result = InsightCheckResult()

    for candidate in candidates:
        label = f"{candidate.insight_type} {candidate.entity_type}#{candidate.entity_id}"
        try:
            fingerprint = compute_fingerprint(candidate.insight_type, candidate.entity_type, candidate.entity_id)
            related = events.get_for_entity(candidate.entity_type, candidate.entity_id, RELATED_EVENT_LOOKBACK)
            evidence_ids = list(dict.fromkeys(candidate.evidence_ids + [e.id for e in related]))
            insight, created = insights.upsert(candidate, fingerprint, evidence_ids, now)
        except (EngineError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Failed to persist insight {label}: {type(e).__name__}: {str(e)}")
            result.errors.append(f"{label}: {str(e)}")
            continue

        if not created:
            result.skipped += 1
            continue

        result.created += 1
        metrics.increment_counter("insights_created", {
            "type": candidate.insight_type,
            "severity": str(candidate.severity),
        })
        if candidate.proposal is not None:
            proposal = candidate.proposal
            try:
                propose_action(
                    db,
                    action_type=proposal.action_type,
                    title=proposal.title,
                    description=proposal.description,
                    target_module=proposal.target_module,
                    target_mutation=proposal.target_mutation,
                    payload=proposal.payload,
                    insight_id=insight.id,
                    created_by="system",
                    metrics=metrics,
                )
            except EngineError as e:
                logger.error(f"Failed to propose action for insight {insight.id}: {type(e).__name__}: {str(e)}")
                result.errors.append(f"{label}: action proposal failed: {str(e)}")
    return result


def run_insight_check(db: Session, name: str, rule: Rule, now: Optional[datetime] = None,
                      metrics: Optional[MetricsRegistry] = None) -> InsightCheckResult:
    """Run one rule and persist its candidates.

    A failing rule, an unreadable record and a candidate that cannot be stored each
    become an error entry; everything else is still persisted.
    """
    metrics = metrics or default_metrics
    now = now or datetime.utcnow()
    try:
        candidates = rule(db, now)
    except Exception as e:
        db.rollback()
        logger.error(f"Insight rule {name} failed: {type(e).__name__}: {str(e)}")
        metrics.log_error(ErrorRecord(type="insight_rule_failure", message=f"{name}: {type(e).__name__}: {str(e)}"))
        return InsightCheckResult(errors=[f"{name}: {type(e).__name__}: {str(e)}"])

    result = persist_candidates(db, candidates, now, metrics)
    for error in getattr(candidates, "errors", []):
        metrics.log_error(ErrorRecord(type="insight_record_failure", message=f"{name}: {error}"))
        result.errors.append(f"{name}: {error}")
    logger.info(f"Insight rule {name}: {result}")
    return result


def run_all_insight_checks(db: Session, rules: Optional[RuleRegistry] = None, now: Optional[datetime] = None,
                           metrics: Optional[MetricsRegistry] = None) -> InsightRunReport:
    """Run every registered rule; one failing rule never stops the others."""
    metrics = metrics or default_metrics
    rules = rules or default_rules()
    now = now or datetime.utcnow()

    report = InsightRunReport()
    report.started_at = datetime.utcnow()
    for name, rule in rules.items():
        report.results[name] = run_insight_check(db, name, rule, now, metrics)
    report.finished_at = datetime.utcnow()

    totals = report.totals
    metrics.increment_counter("insight_check_runs")
    metrics.record_metric("insight_check_duration_ms",
                          (report.finished_at - report.started_at).total_seconds() * 1000.0)
    logger.info(f"Insight checks finished: created={totals.created} skipped={totals.skipped} errors={len(totals.errors)}")
    return report


def dismiss_insight(db: Session, insight_id: int, by_user_id: str, now: Optional[datetime] = None) -> bool:
    """Dismiss an active insight. False if it is not active; NotFound if unknown."""
    return InsightRepository(db).dismiss(insight_id, str(by_user_id), now or datetime.utcnow())


def resolve_insight(db: Session, insight_id: int, now: Optional[datetime] = None) -> bool:
    """Resolve an active insight. False if it is not active; NotFound if unknown."""
    return InsightRepository(db).resolve(insight_id, now or datetime.utcnow())


def expire_stale_insights(db: Session, now: Optional[datetime] = None) -> int:
    return InsightRepository(db).expire_stale(now or datetime.utcnow())


def list_insights(db: Session, status: Optional[str] = None, severity: Optional[str] = None,
                  limit: int = DEFAULT_INSIGHT_LIMIT, now: Optional[datetime] = None) -> List[Insight]:
    """Critical first, then warning, then info; newest first within a severity."""
    limit = max(1, min(int(limit), MAX_INSIGHT_LIMIT))
    return InsightRepository(db).list_insights(now or datetime.utcnow(), status=status, severity=severity, limit=limit)


def get_insight(db: Session, insight_id: int, now: Optional[datetime] = None) -> Optional[Insight]:
    return InsightRepository(db).get(insight_id, now)
