"""Human-approved action workflow.

An action moves suggested -> approved|rejected, and approved -> executed|failed.
Every transition is a conditional update on (id, status, version), so two
callers racing on the same action cannot both win. Execution claims the action
before running its executor, and executors write inside that same transaction,
so the business mutation commits exactly once or not at all.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from erpinsight.errors import ExecutionFailed, InvalidTransition, NotFound, ValidationError
from erpinsight.models.action import Action, ActionStatus, can_transition
from erpinsight.models.user import Principal
from erpinsight.database.action_repository import ActionRepository
from erpinsight.database.erp_models import ProducerPayableDB, PurchaseRequestDB
from erpinsight.security.rbac import Operation, Resource, check_permission
from erpinsight.observability.metrics import ErrorRecord, MetricsRegistry, metrics as default_metrics

logger = logging.getLogger(__name__)

ActionExecutor = Callable[[Session, Action], Optional[Dict[str, Any]]]


class ActionExecutorRegistry:
    """Maps (target_module, target_mutation) to the function that performs it."""

    def __init__(self):
        self._executors: Dict[Tuple[str, str], ActionExecutor] = {}

    def register(self, target_module: str, target_mutation: str, executor: ActionExecutor) -> None:
        self._executors[(target_module, target_mutation)] = executor

    def get(self, target_module: str, target_mutation: str) -> Optional[ActionExecutor]:
        return self._executors.get((target_module, target_mutation))

    def keys(self) -> List[Tuple[str, str]]:
        return list(self._executors)


def create_purchase_request(db: Session, action: Action) -> Dict[str, Any]:
    """Open a purchase request for a warehouse item."""
    payload = action.payload
    if "warehouse_item_id" not in payload:
        raise ValueError("payload.warehouse_item_id is required")
    request = PurchaseRequestDB(
        request_number=f"AI-{action.id:06d}",
        sector="almoxarifado",
        urgency=payload.get("urgency", "normal"),
        status="solicitado",
        created_at=datetime.utcnow(),
    )
    db.add(request)
    db.flush()
    return {"purchase_request_id": request.id, "request_number": request.request_number}


def schedule_payment(db: Session, action: Action) -> Dict[str, Any]:
    """Move a pending producer payable to scheduled."""
    payable_id = action.payload.get("payable_id")
    payable = db.query(ProducerPayableDB).filter(ProducerPayableDB.id == payable_id).first()
    if payable is None:
        raise LookupError(f"Producer payable {payable_id} not found")
    if payable.status != "pendente":
        raise ValueError(f"Producer payable {payable_id} is {payable.status}, not pendente")
    payable.status = "programado"
    db.flush()
    return {"payable_id": payable.id, "status": payable.status}


def default_executors() -> ActionExecutorRegistry:
    registry = ActionExecutorRegistry()
    registry.register("compras", "create_purchase_request", create_purchase_request)
    registry.register("pagamentos", "schedule_payment", schedule_payment)
    return registry


def _audit(gate, principal: Principal, operation: Operation, action_id: int,
           success: bool, details: Optional[Dict[str, Any]] = None, error_message: Optional[str] = None) -> None:
    if gate is not None:
        gate.record(principal, Resource.AI_ACTION, operation, success=success, resource_id=action_id,
                    details=details, error_message=error_message)


def _load(repo: ActionRepository, action_id: int) -> Action:
    action = repo.get(action_id)
    if action is None:
        raise NotFound(f"Action {action_id} not found")
    return action


def propose_action(db: Session, action_type: str, title: str, target_module: str, target_mutation: str,
                   payload: Optional[Dict[str, Any]] = None, description: Optional[str] = None,
                   insight_id: Optional[int] = None, conversation_id: Optional[int] = None,
                   created_by: Optional[str] = None, metrics: Optional[MetricsRegistry] = None) -> Action:
    """Record a suggested action. Proposing again after a failure creates a new record."""
    for field, value in (("action_type", action_type), ("title", title),
                         ("target_module", target_module), ("target_mutation", target_mutation)):
        if not value or not str(value).strip():
            raise ValidationError(f"{field} is required")
    action = ActionRepository(db).create(
        action_type=action_type,
        title=title,
        description=description,
        target_module=target_module,
        target_mutation=target_mutation,
        payload=payload or {},
        insight_id=insight_id,
        conversation_id=conversation_id,
        created_by=created_by,
    )
    (metrics or default_metrics).increment_counter("actions_proposed", {"type": action_type})
    logger.info(f"Action {action.id} proposed: {action_type} -> {target_module}.{target_mutation}")
    return action


def approve_action(db: Session, action_id: int, principal: Principal, gate=None,
                   metrics: Optional[MetricsRegistry] = None) -> Action:
    """Approve a suggested action.

    Raises:
        PermissionDenied: role may not approve
        NotFound: unknown action
        InvalidTransition: action is not suggested, or another caller decided first
    """
    check_permission(principal.role, Resource.AI_ACTION, Operation.APPROVE)
    repo = ActionRepository(db)
    action = _load(repo, action_id)
    if not can_transition(action.status, ActionStatus.APPROVED.value):
        raise InvalidTransition(f"Action {action_id} is {action.status}, cannot approve")

    now = datetime.utcnow()
    if not repo.transition(action_id, ActionStatus.SUGGESTED, action.version, ActionStatus.APPROVED,
                           principal.user_id, values={"decided_by": principal.user_id, "decided_at": now}):
        raise InvalidTransition(f"Action {action_id} was decided concurrently")

    _audit(gate, principal, Operation.APPROVE, action_id, True, {"action_type": action.action_type})
    (metrics or default_metrics).increment_counter("actions_decided", {"decision": "approved"})
    logger.info(f"Action {action_id} approved by {principal.user_id}")
    return _load(repo, action_id)


def reject_action(db: Session, action_id: int, reason: str, principal: Principal, gate=None,
                  metrics: Optional[MetricsRegistry] = None) -> Action:
    """Reject a suggested action. A non-blank reason is required."""
    check_permission(principal.role, Resource.AI_ACTION, Operation.REJECT)
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required")
    repo = ActionRepository(db)
    action = _load(repo, action_id)
    if not can_transition(action.status, ActionStatus.REJECTED.value):
        raise InvalidTransition(f"Action {action_id} is {action.status}, cannot reject")

    now = datetime.utcnow()
    if not repo.transition(action_id, ActionStatus.SUGGESTED, action.version, ActionStatus.REJECTED,
                           principal.user_id, reason=reason.strip(),
                           values={"decided_by": principal.user_id, "decided_at": now,
                                   "rejection_reason": reason.strip()}):
        raise InvalidTransition(f"Action {action_id} was decided concurrently")

    _audit(gate, principal, Operation.REJECT, action_id, True, {"reason": reason.strip()})
    (metrics or default_metrics).increment_counter("actions_decided", {"decision": "rejected"})
    logger.info(f"Action {action_id} rejected by {principal.user_id}")
    return _load(repo, action_id)


def execute_action(db: Session, action_id: int, principal: Principal,
                   executors: Optional[ActionExecutorRegistry] = None, gate=None,
                   metrics: Optional[MetricsRegistry] = None) -> Action:
    """Run the executor for an approved action.

    The action is claimed (approved -> executed) before the executor runs, and
    the claim, the executor's writes and the decision row commit together. A
    caller that loses the claim never runs the executor.

    Raises:
        PermissionDenied: role may not execute
        NotFound: unknown action
        InvalidTransition: action is not approved (including already executed)
        ExecutionFailed: the executor failed or none is registered; the action is now failed
    """
    check_permission(principal.role, Resource.AI_ACTION, Operation.EXECUTE)
    metrics = metrics or default_metrics
    executors = executors or default_executors()
    repo = ActionRepository(db)

    action = _load(repo, action_id)
    if not can_transition(action.status, ActionStatus.EXECUTED.value):
        raise InvalidTransition(f"Action {action_id} is {action.status}, cannot execute")

    executor = executors.get(action.target_module, action.target_mutation)
    if executor is None:
        _fail(repo, action, principal, f"No executor for {action.target_module}.{action.target_mutation}",
              gate, metrics)

    if not repo.claim(action_id, ActionStatus.APPROVED, action.version, ActionStatus.EXECUTED,
                      values={"executed_at": datetime.utcnow()}):
        raise InvalidTransition(f"Action {action_id} was executed concurrently")

    try:
        result = executor(db, action)
    except Exception as e:
        # Drops the claim along with any partial writes.
        db.rollback()
        _fail(repo, action, principal, f"{type(e).__name__}: {str(e)}", gate, metrics)
    repo.record_decision(action_id, principal.user_id, ActionStatus.EXECUTED)

    _audit(gate, principal, Operation.EXECUTE, action_id, True, {"result": result or {}})
    metrics.increment_counter("actions_executed", {"type": action.action_type})
    logger.info(f"Action {action_id} executed by {principal.user_id}")
    return _load(repo, action_id)


def _fail(repo: ActionRepository, action: Action, principal: Principal, failure: str,
          gate, metrics: MetricsRegistry) -> None:
    """Mark an approved action failed and raise ExecutionFailed."""
    if not repo.transition(action.id, ActionStatus.APPROVED, action.version, ActionStatus.FAILED,
                           principal.user_id, reason=failure, values={"failure_reason": failure}):
        raise InvalidTransition(f"Action {action.id} changed while executing")
    _audit(gate, principal, Operation.EXECUTE, action.id, False, error_message=failure)
    metrics.log_error(ErrorRecord(type="action_execution_failure", message=failure,
                                  user_id=principal.user_id, context={"action_id": action.id}))
    logger.error(f"Action {action.id} failed: {failure}")
    raise ExecutionFailed(f"Action {action.id} failed: {failure}")


def list_actions(db: Session, status: Optional[str] = None, limit: int = 50) -> List[Action]:
    """Newest first."""
    return ActionRepository(db).list_actions(status=status, limit=max(1, min(int(limit), 200)))


def get_action(db: Session, action_id: int) -> Action:
    return _load(ActionRepository(db), action_id)
