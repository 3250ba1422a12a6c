"""FastAPI web application for the ERP Insight & Action Engine."""

import logging
import os
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session

from erpinsight.api.schemas import (
    AccessResponse,
    ActionListResponse,
    EmitEventResponse,
    EmitEventsRequest,
    EmitEventsResponse,
    EventListResponse,
    FeatureRoleRequest,
    FeatureUserRequest,
    FlagUpdateResponse,
    InsightListResponse,
    InsightRunResponse,
    RejectActionRequest,
    RolloutRequest,
    StatsResponse,
    TransitionResponse,
)
from erpinsight.auth.dependencies import get_current_principal
from erpinsight.database.database import SessionLocal, get_db, init_db, session_scope
from erpinsight.database.erp_repository import ErpRepository
from erpinsight.database.insight_repository import InsightRepository
from erpinsight.engine import actions as action_engine
from erpinsight.engine import insights as insight_engine
from erpinsight.engine.actions import ActionExecutorRegistry, default_executors
from erpinsight.engine.context import AssistantContext, ContextOptions, build_context
from erpinsight.engine.events import count_events_since, emit_event, emit_events, get_recent_events
from erpinsight.engine.rules import RuleRegistry, default_rules
from erpinsight.engine.scheduler import InsightCheckScheduler
from erpinsight.errors import (
    ExecutionFailed,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    RateLimited,
    StorageError,
    ValidationError,
)
from erpinsight.models.action import Action, ActionStatus
from erpinsight.models.audit import AuditLogEntry, AuditLogFilters
from erpinsight.models.constants import (
    DEFAULT_CONTEXT_MAX_CHARS,
    DEFAULT_EVENT_LIMIT,
    DEFAULT_INSIGHT_CHECK_INTERVAL_SEC,
    DEFAULT_INSIGHT_LIMIT,
    DEFAULT_NOTIFICATION_CHECK_INTERVAL_SEC,
    STATS_EVENT_WINDOW_DAYS,
)
from erpinsight.models.event import EventCreate
from erpinsight.models.feature_flag import FeatureFlag
from erpinsight.models.insight import InsightRunReport, InsightSeverity, InsightStatus
from erpinsight.models.notification import NotificationConfig
from erpinsight.models.user import Principal, Role
from erpinsight.notifications.dispatcher import (
    NotificationDispatcher,
    get_notification_config,
    save_notification_config,
)
from erpinsight.observability.metrics import metrics
from erpinsight.security.audit import AuditLogger
from erpinsight.security.feature_flags import (
    COPILOT_ACTIONS,
    COPILOT_ENABLED,
    DatabaseFeatureFlagStore,
    FeatureFlagRegistry,
)
from erpinsight.security.gate import SecurityGate
from erpinsight.security.rate_limit import RateLimiter
from erpinsight.security.rbac import Operation, Resource, get_role_permissions

load_dotenv()

logger = logging.getLogger(__name__)

INSIGHT_CHECK_INTERVAL_SEC = float(os.getenv("INSIGHT_CHECK_INTERVAL_SEC", str(DEFAULT_INSIGHT_CHECK_INTERVAL_SEC)))
NOTIFICATION_CHECK_INTERVAL_SEC = float(
    os.getenv("NOTIFICATION_CHECK_INTERVAL_SEC", str(DEFAULT_NOTIFICATION_CHECK_INTERVAL_SEC))
)
CONTEXT_MAX_CHARS = int(os.getenv("CONTEXT_MAX_CHARS", str(DEFAULT_CONTEXT_MAX_CHARS)))

# Process-wide services; routes reach them through the dependencies below.
rate_limiter = RateLimiter()
audit_logger = AuditLogger(SessionLocal, metrics)
dispatcher = NotificationDispatcher(metrics=metrics)
executors = default_executors()
rules = default_rules()

_flags: Optional[FeatureFlagRegistry] = None
_flags_lock = threading.Lock()


def get_flags() -> FeatureFlagRegistry:
    global _flags
    with _flags_lock:
        if _flags is None:
            _flags = FeatureFlagRegistry(DatabaseFeatureFlagStore(SessionLocal))
        return _flags


def get_gate(flags: FeatureFlagRegistry = Depends(get_flags)) -> SecurityGate:
    return SecurityGate(flags, rate_limiter, audit_logger)


def get_executors() -> ActionExecutorRegistry:
    return executors


def get_rules() -> RuleRegistry:
    return rules


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


def get_principal(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
    """Authenticated caller, counted in usage metrics."""
    metrics.track_usage(principal.user_id, principal.role, route_template(request))
    return principal


def run_insight_checks(db: Session, registry: Optional[RuleRegistry] = None) -> InsightRunReport:
    """Expire stale insights, then run every rule. Shared by the ticker and POST /insights/run."""
    expired = insight_engine.expire_stale_insights(db)
    if expired:
        logger.info(f"Expired {expired} stale insight(s)")
    return insight_engine.run_all_insight_checks(db, registry or rules, metrics=metrics)


def _scheduled_insight_checks(db: Optional[Session] = None,
                              registry: Optional[RuleRegistry] = None) -> InsightRunReport:
    if db is not None:
        return run_insight_checks(db, registry)
    with session_scope() as scoped:
        return run_insight_checks(scoped, registry)


def _scheduled_notifications() -> Dict[str, Any]:
    with session_scope() as db:
        return dispatcher.run_scheduled(db)


insight_scheduler = InsightCheckScheduler(_scheduled_insight_checks, INSIGHT_CHECK_INTERVAL_SEC)
notification_scheduler = InsightCheckScheduler(
    _scheduled_notifications, NOTIFICATION_CHECK_INTERVAL_SEC, name="notification-check",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, load flags and start the background tickers."""
    init_db()
    get_flags()
    insight_scheduler.start()
    notification_scheduler.start()
    yield
    insight_scheduler.stop()
    notification_scheduler.stop()


# Initialize FastAPI app
app = FastAPI(
    title="ERP Insight & Action Engine API",
    description="Turns ERP events into ranked insights and approval-gated actions",
    version="0.1.0",
    lifespan=lifespan,
)


UNMATCHED_ROUTE = "unmatched"


def route_template(request: Request) -> str:
    """Path template of the matched route (`/actions/{action_id}/approve`), never the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


@app.middleware("http")
async def track_request_latency(request: Request, call_next):
    with metrics.track_latency(UNMATCHED_ROUTE, request.method) as state:
        try:
            response = await call_next(request)
        finally:
            state["endpoint"] = route_template(request)
        state["status_code"] = response.status_code
    return response


# Error mapping

def _error(status_code: int, detail: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(422, str(exc))


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    # Never reveal which check failed.
    return _error(403, "Permission denied")


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    return _error(429, "Rate limit exceeded", headers={"Retry-After": str(exc.retry_after_seconds)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(404, str(exc))


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return _error(409, str(exc))


@app.exception_handler(ExecutionFailed)
async def execution_failed_handler(request: Request, exc: ExecutionFailed):
    return _error(502, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.method} {request.url.path}: {str(exc)}")
    return _error(503, "Storage unavailable")


def _check_choice(field: str, value: Optional[str], choices) -> None:
    if value is not None and value not in {c.value for c in choices}:
        raise ValidationError(f"Invalid {field}: {value}")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/metrics")
def prometheus_metrics():
    """Prometheus exposition of the process-wide metrics registry."""
    return Response(content=metrics.export_prometheus(), media_type=CONTENT_TYPE_LATEST)


# Events

@app.post("/events", response_model=EmitEventResponse, status_code=201)
def create_event(
    event: EventCreate,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Append one domain event."""
    gate.authorize(principal, Resource.AI_EVENTS, Operation.EMIT, rate_key="default")
    if event.user_id is None:
        event = event.model_copy(update={"user_id": principal.user_id})
    return EmitEventResponse(event_id=emit_event(db, event, metrics))


@app.post("/events/batch", response_model=EmitEventsResponse, status_code=201)
def create_events(
    request: EmitEventsRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Append events atomically: either all are stored or none."""
    gate.authorize(principal, Resource.AI_EVENTS, Operation.EMIT, rate_key="default")
    events = [
        e if e.user_id is not None else e.model_copy(update={"user_id": principal.user_id})
        for e in request.events
    ]
    return EmitEventsResponse(event_ids=emit_events(db, events, metrics))


@app.get("/events", response_model=EventListResponse)
def list_events(
    limit: int = DEFAULT_EVENT_LIMIT,
    module: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Recent events, newest first."""
    gate.authorize(principal, Resource.AI_EVENTS, Operation.LIST, rate_key="insights")
    events = get_recent_events(db, limit, module)
    return EventListResponse(events=events, count=len(events))


# Insights

@app.get("/insights", response_model=InsightListResponse)
def list_insights(
    status: Optional[str] = None,
    severity: Optional[str] = None,
    limit: int = DEFAULT_INSIGHT_LIMIT,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Insights ordered critical first, then newest."""
    gate.authorize(principal, Resource.AI_INSIGHTS, Operation.LIST, rate_key="insights")
    _check_choice("status", status, InsightStatus)
    _check_choice("severity", severity, InsightSeverity)
    insights = insight_engine.list_insights(db, status=status, severity=severity, limit=limit)
    return InsightListResponse(insights=insights, count=len(insights))


@app.post("/insights/run", response_model=InsightRunResponse)
def run_insights(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    registry: RuleRegistry = Depends(get_rules),
    db: Session = Depends(get_db),
):
    """Run every insight rule now, serialized with the background ticker."""
    gate.authorize(principal, Resource.AI_INSIGHTS, Operation.RUN, rate_key="insights")
    report = insight_scheduler.trigger_now(db, registry)
    totals = report.totals
    gate.record(principal, Resource.AI_INSIGHTS, Operation.RUN, details=totals.to_dict())
    return InsightRunResponse(
        created=totals.created,
        skipped=totals.skipped,
        errors=totals.errors,
        results={name: result.to_dict() for name, result in report.results.items()},
    )


@app.post("/insights/{insight_id}/dismiss", response_model=TransitionResponse)
def dismiss_insight(
    insight_id: int,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_INSIGHTS, Operation.DISMISS, rate_key="insights", resource_id=insight_id)
    success = insight_engine.dismiss_insight(db, insight_id, principal.user_id)
    gate.record(principal, Resource.AI_INSIGHTS, Operation.DISMISS, success=success, resource_id=insight_id,
                error_message=None if success else "insight not active")
    return TransitionResponse(id=insight_id, success=success)


@app.post("/insights/{insight_id}/resolve", response_model=TransitionResponse)
def resolve_insight(
    insight_id: int,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_INSIGHTS, Operation.RESOLVE, rate_key="insights", resource_id=insight_id)
    success = insight_engine.resolve_insight(db, insight_id)
    gate.record(principal, Resource.AI_INSIGHTS, Operation.RESOLVE, success=success, resource_id=insight_id,
                error_message=None if success else "insight not active")
    return TransitionResponse(id=insight_id, success=success)


# Actions

@app.get("/actions", response_model=ActionListResponse)
def list_actions(
    status: Optional[str] = None,
    limit: int = 50,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_ACTION, Operation.LIST, rate_key="actions")
    _check_choice("status", status, ActionStatus)
    actions = action_engine.list_actions(db, status=status, limit=limit)
    return ActionListResponse(actions=actions, count=len(actions))


@app.post("/actions/{action_id}/approve", response_model=Action)
def approve_action(
    action_id: int,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_ACTION, Operation.APPROVE, rate_key="actions",
                   feature=COPILOT_ACTIONS, resource_id=action_id)
    return action_engine.approve_action(db, action_id, principal, gate=gate, metrics=metrics)


@app.post("/actions/{action_id}/reject", response_model=Action)
def reject_action(
    action_id: int,
    request: RejectActionRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_ACTION, Operation.REJECT, rate_key="actions", resource_id=action_id)
    return action_engine.reject_action(db, action_id, request.reason, principal, gate=gate, metrics=metrics)


@app.post("/actions/{action_id}/execute", response_model=Action)
def execute_action(
    action_id: int,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    registry: ActionExecutorRegistry = Depends(get_executors),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_ACTION, Operation.EXECUTE, rate_key="actions",
                   feature=COPILOT_ACTIONS, resource_id=action_id)
    return action_engine.execute_action(db, action_id, principal, executors=registry, gate=gate, metrics=metrics)


# Assistant context

@app.get("/context", response_model=AssistantContext)
def get_context(
    scope: str = "full",
    module: Optional[str] = None,
    max_events: int = Query(20, ge=1),
    max_insights: int = Query(20, ge=1),
    include_summary: bool = True,
    include_events: bool = True,
    include_insights: bool = True,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Redacted ERP snapshot for the assistant. Production scope leaves out financial data."""
    if scope not in ("full", "production"):
        raise ValidationError(f"Invalid scope: {scope}")
    operation = Operation.FULL if scope == "full" else Operation.PRODUCTION
    gate.authorize(principal, Resource.AI_CONTEXT, operation, rate_key="chat", feature=COPILOT_ENABLED)
    options = ContextOptions(
        include_summary=include_summary,
        include_events=include_events,
        include_insights=include_insights,
        max_events=max_events,
        max_insights=max_insights,
        max_chars=CONTEXT_MAX_CHARS,
        module=module,
        scope=scope,
    )
    return build_context(db, options)


@app.get("/stats", response_model=StatsResponse)
def get_stats(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.AI_INSIGHTS, Operation.LIST, rate_key="insights")
    now = datetime.utcnow()
    erp = ErpRepository(db)
    return StatsResponse(
        conversations=erp.count_conversations(principal.user_id),
        messages=erp.count_messages(principal.user_id),
        active_insights=InsightRepository(db).count_active(now),
        recent_events=count_events_since(db, now - timedelta(days=STATS_EVENT_WINDOW_DAYS)),
    )


@app.get("/access", response_model=AccessResponse)
def check_access(
    principal: Principal = Depends(get_principal),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    """What the caller can see: feature flag states and role permissions."""
    return AccessResponse(
        user_id=principal.user_id,
        role=principal.role,
        features=flags.get_user_features(principal.user_id, principal.role),
        permissions=get_role_permissions(principal.role),
    )


# Admin: notification config

@app.get("/admin/notification-config", response_model=NotificationConfig)
def read_notification_config(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.NOTIFICATION_CONFIG, Operation.VIEW, rate_key="config")
    return get_notification_config(db)


@app.put("/admin/notification-config", response_model=NotificationConfig)
def update_notification_config(
    changes: Dict[str, Any],
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    """Merge the given fields into the stored notification config."""
    gate.authorize(principal, Resource.NOTIFICATION_CONFIG, Operation.EDIT, rate_key="config")
    save_notification_config(db, changes, updated_by=principal.user_id)
    gate.record(principal, Resource.NOTIFICATION_CONFIG, Operation.EDIT, details={"fields": sorted(changes)})
    return get_notification_config(db)


# Admin: feature flags

@app.get("/admin/feature-flags", response_model=List[FeatureFlag])
def read_feature_flags(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.VIEW, rate_key="config")
    return flags.list_flags()


def _flag_change(gate: SecurityGate, principal: Principal, name: str, success: bool,
                 details: Dict[str, Any]) -> FlagUpdateResponse:
    gate.record(principal, Resource.FEATURE_FLAG, Operation.EDIT, success=success, resource_id=name,
                details=details, error_message=None if success else "unknown feature flag")
    if not success:
        raise NotFound(f"Feature flag {name} not found")
    return FlagUpdateResponse(name=name, success=True)


@app.post("/admin/feature-flags/{name}/grant", response_model=FlagUpdateResponse)
def grant_feature(
    name: str,
    request: FeatureUserRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.EDIT, rate_key="config", resource_id=name)
    success = flags.grant_feature_access(name, request.user_id)
    return _flag_change(gate, principal, name, success, {"grant": request.user_id})


@app.post("/admin/feature-flags/{name}/revoke", response_model=FlagUpdateResponse)
def revoke_feature(
    name: str,
    request: FeatureUserRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.EDIT, rate_key="config", resource_id=name)
    success = flags.revoke_feature_access(name, request.user_id)
    return _flag_change(gate, principal, name, success, {"revoke": request.user_id})


@app.post("/admin/feature-flags/{name}/roles", response_model=FlagUpdateResponse)
def add_feature_role(
    name: str,
    request: FeatureRoleRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.EDIT, rate_key="config", resource_id=name)
    _check_choice("role", request.role, Role)
    success = flags.add_role_to_feature(name, request.role)
    return _flag_change(gate, principal, name, success, {"add_role": request.role})


@app.delete("/admin/feature-flags/{name}/roles/{role}", response_model=FlagUpdateResponse)
def remove_feature_role(
    name: str,
    role: str,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.EDIT, rate_key="config", resource_id=name)
    success = flags.remove_role_from_feature(name, role)
    return _flag_change(gate, principal, name, success, {"remove_role": role})


@app.put("/admin/feature-flags/{name}/rollout", response_model=FlagUpdateResponse)
def update_feature_rollout(
    name: str,
    request: RolloutRequest,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    flags: FeatureFlagRegistry = Depends(get_flags),
):
    """Set the rollout percentage; values outside 0-100 are clamped."""
    gate.authorize(principal, Resource.FEATURE_FLAG, Operation.EDIT, rate_key="config", resource_id=name)
    success = flags.update_rollout_percentage(name, request.percentage)
    return _flag_change(gate, principal, name, success, {"rollout_percentage": request.percentage})


# Admin: observability and security

@app.get("/admin/metrics")
def metrics_dashboard(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.METRICS, Operation.VIEW, rate_key="config")
    return metrics.get_metrics_dashboard(db)


@app.get("/admin/usage")
def usage_stats(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
    db: Session = Depends(get_db),
):
    gate.authorize(principal, Resource.METRICS, Operation.VIEW, rate_key="config")
    return metrics.get_usage_stats(db)


@app.get("/admin/latency")
def latency_stats(
    endpoint: Optional[str] = None,
    slow_ms: float = 1000.0,
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
):
    """Latency percentiles plus the most recent slow requests."""
    gate.authorize(principal, Resource.METRICS, Operation.VIEW, rate_key="config")
    slow = metrics.get_latency_logs(endpoint=endpoint, min_duration_ms=slow_ms, limit=20)
    return {
        "stats": metrics.get_latency_stats(endpoint),
        "slow_requests": [r.model_dump(mode="json") for r in slow],
    }


@app.get("/admin/security-check")
def security_check(
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
):
    gate.authorize(principal, Resource.METRICS, Operation.VIEW, rate_key="config")
    checks = gate.run_checklist()
    return {
        "passed": all(c.passed for c in checks),
        "checks": [c.model_dump() for c in checks],
    }


@app.get("/admin/audit-logs", response_model=List[AuditLogEntry])
def audit_logs(
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    success: Optional[bool] = None,
    since: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    gate: SecurityGate = Depends(get_gate),
):
    gate.authorize(principal, Resource.AI_CONFIG, Operation.VIEW, rate_key="config")
    if gate.audit is None:
        return []
    return gate.audit.get_audit_logs(AuditLogFilters(
        user_id=user_id, resource=resource, action=action, success=success, since=since, limit=limit,
    ))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
