"""Tests for the action approval workflow."""

import threading

import pytest

from erpinsight.database.action_repository import ActionRepository
from erpinsight.database.erp_models import ProducerPayableDB, PurchaseRequestDB
from erpinsight.engine.actions import (
    ActionExecutorRegistry,
    approve_action,
    default_executors,
    execute_action,
    get_action,
    list_actions,
    propose_action,
    reject_action,
)
from erpinsight.errors import ExecutionFailed, InvalidTransition, NotFound, PermissionDenied, ValidationError
from erpinsight.models.action import can_transition
from erpinsight.models.audit import AuditLogFilters
from erpinsight.models.user import Principal


def _propose(db, metrics, target_module="compras", target_mutation="create_purchase_request", payload=None):
    return propose_action(
        db,
        action_type="purchase_request",
        title="Solicitar compra de coco seco",
        target_module=target_module,
        target_mutation=target_mutation,
        payload=payload if payload is not None else {"warehouse_item_id": 1, "quantity": 160, "urgency": "alta"},
        created_by="system",
        metrics=metrics,
    )


class TestStateMachine:
    """Test the transition table."""

    @pytest.mark.parametrize("current,target,allowed", [
        ("suggested", "approved", True),
        ("suggested", "rejected", True),
        ("suggested", "executed", False),
        ("approved", "executed", True),
        ("approved", "failed", True),
        ("approved", "rejected", False),
        ("executed", "approved", False),
        ("failed", "approved", False),
        ("rejected", "approved", False),
        ("unknown", "approved", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestProposeAction:
    """Test action proposal."""

    def test_starts_suggested(self, db_session, metrics_registry):
        action = _propose(db_session, metrics_registry)
        assert action.status == "suggested"
        assert action.version == 0
        assert action.created_by == "system"
        assert metrics_registry.get_metric_sum("actions_proposed", {"type": "purchase_request"}) == 1

    def test_requires_target(self, db_session, metrics_registry):
        with pytest.raises(ValidationError):
            _propose(db_session, metrics_registry, target_mutation=" ")

    def test_list_newest_first(self, db_session, metrics_registry):
        first = _propose(db_session, metrics_registry)
        second = _propose(db_session, metrics_registry)
        assert [a.id for a in list_actions(db_session)] == [second.id, first.id]
        assert list_actions(db_session, status="approved") == []


class TestDecisions:
    """Test approve and reject."""

    def test_approve_once(self, db_session, ceo, metrics_registry):
        """A second approval of the same action is an invalid transition."""
        action = _propose(db_session, metrics_registry)

        approved = approve_action(db_session, action.id, ceo, metrics=metrics_registry)
        assert approved.status == "approved"
        assert approved.decided_by == "ceo-1"
        assert approved.version == 1

        with pytest.raises(InvalidTransition):
            approve_action(db_session, action.id, ceo, metrics=metrics_registry)

    def test_approval_history(self, db_session, ceo, metrics_registry):
        action = _propose(db_session, metrics_registry)
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)

        decisions = ActionRepository(db_session).get_decisions(action.id)
        assert [(d["user_id"], d["decision"]) for d in decisions] == [("ceo-1", "approved")]

    def test_operator_cannot_approve(self, db_session, operator, metrics_registry):
        action = _propose(db_session, metrics_registry)
        with pytest.raises(PermissionDenied):
            approve_action(db_session, action.id, operator, metrics=metrics_registry)
        assert get_action(db_session, action.id).status == "suggested"

    def test_manager_can_reject_but_not_approve(self, db_session, manager, metrics_registry):
        action = _propose(db_session, metrics_registry)
        with pytest.raises(PermissionDenied):
            approve_action(db_session, action.id, manager, metrics=metrics_registry)

        rejected = reject_action(db_session, action.id, "  Fornecedor sem estoque ", manager, metrics=metrics_registry)
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Fornecedor sem estoque"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reject_requires_reason(self, db_session, manager, metrics_registry, reason):
        action = _propose(db_session, metrics_registry)
        with pytest.raises(ValidationError):
            reject_action(db_session, action.id, reason, manager, metrics=metrics_registry)

    def test_cannot_reject_after_approval(self, db_session, ceo, metrics_registry):
        action = _propose(db_session, metrics_registry)
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)
        with pytest.raises(InvalidTransition):
            reject_action(db_session, action.id, "tarde demais", ceo, metrics=metrics_registry)

    def test_unknown_action(self, db_session, ceo, metrics_registry):
        with pytest.raises(NotFound):
            approve_action(db_session, 999, ceo, metrics=metrics_registry)

    def test_decisions_are_audited(self, db_session, ceo, gate, audit_logger, metrics_registry):
        action = _propose(db_session, metrics_registry)
        approve_action(db_session, action.id, ceo, gate=gate, metrics=metrics_registry)

        entries = audit_logger.get_audit_logs(AuditLogFilters(resource="ai_action"))
        assert len(entries) == 1
        assert entries[0].action == "approve"
        assert entries[0].resource_id == str(action.id)
        assert entries[0].success is True


class TestExecution:
    """Test executing approved actions."""

    def test_execute_purchase_request(self, db_session, erp_data, ceo, metrics_registry):
        item_id = erp_data["critical_stock"].id
        action = _propose(db_session, metrics_registry, payload={"warehouse_item_id": item_id, "urgency": "alta"})
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)

        executed = execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)

        assert executed.status == "executed"
        assert executed.executed_at is not None
        created = db_session.query(PurchaseRequestDB).filter(
            PurchaseRequestDB.request_number == f"AI-{action.id:06d}"
        ).one()
        assert created.urgency == "alta"
        assert metrics_registry.get_metric_sum("actions_executed") == 1

    def test_execute_schedule_payment(self, db_session, erp_data, admin, metrics_registry):
        payable = erp_data["overdue_producer_payment"]
        action = _propose(db_session, metrics_registry, target_module="pagamentos", target_mutation="schedule_payment",
                          payload={"payable_id": payable.id, "producer_id": 7})
        approve_action(db_session, action.id, admin, metrics=metrics_registry)
        execute_action(db_session, action.id, admin, default_executors(), metrics=metrics_registry)

        db_session.expire_all()
        assert db_session.get(ProducerPayableDB, payable.id).status == "programado"

    def test_cannot_execute_before_approval(self, db_session, ceo, metrics_registry):
        action = _propose(db_session, metrics_registry)
        with pytest.raises(InvalidTransition):
            execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)

    def test_cannot_execute_twice(self, db_session, erp_data, ceo, metrics_registry):
        action = _propose(db_session, metrics_registry,
                          payload={"warehouse_item_id": erp_data["critical_stock"].id})
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)
        execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)
        with pytest.raises(InvalidTransition):
            execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)

    def test_missing_executor_fails_action(self, db_session, ceo, gate, audit_logger, metrics_registry):
        action = _propose(db_session, metrics_registry, target_module="rh", target_mutation="hire")
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)

        with pytest.raises(ExecutionFailed):
            execute_action(db_session, action.id, ceo, ActionExecutorRegistry(), gate=gate, metrics=metrics_registry)

        failed = get_action(db_session, action.id)
        assert failed.status == "failed"
        assert failed.failure_reason == "No executor for rh.hire"
        assert metrics_registry.get_error_counts() == {"action_execution_failure": 1}
        assert audit_logger.get_audit_logs(AuditLogFilters(success=False))[0].action == "execute"

    def test_executor_error_fails_action(self, db_session, ceo, metrics_registry):
        action = _propose(db_session, metrics_registry, payload={"quantity": 10})
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)

        with pytest.raises(ExecutionFailed, match="warehouse_item_id"):
            execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)
        assert get_action(db_session, action.id).status == "failed"

        # A failed action is terminal.
        with pytest.raises(InvalidTransition):
            execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)

    def test_executor_writes_roll_back_on_failure(self, db_session, ceo, metrics_registry):
        def half_done(db, action):
            db.add(PurchaseRequestDB(request_number="PARTIAL", status="solicitado"))
            db.flush()
            raise RuntimeError("supplier offline")

        registry = ActionExecutorRegistry()
        registry.register("compras", "create_purchase_request", half_done)
        action = _propose(db_session, metrics_registry)
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)

        with pytest.raises(ExecutionFailed, match="supplier offline"):
            execute_action(db_session, action.id, ceo, registry, metrics=metrics_registry)

        assert db_session.query(PurchaseRequestDB).filter(PurchaseRequestDB.request_number == "PARTIAL").count() == 0
        failed = get_action(db_session, action.id)
        assert failed.status == "failed"
        assert failed.executed_at is None

    def test_stale_worker_loses_claim_before_running_executor(self, db_session, erp_data, ceo,
                                                              metrics_registry, monkeypatch):
        from erpinsight.engine import actions as actions_module

        action = _propose(db_session, metrics_registry,
                          payload={"warehouse_item_id": erp_data["critical_stock"].id})
        approve_action(db_session, action.id, ceo, metrics=metrics_registry)
        # What a second worker read before the first one executed.
        stale = get_action(db_session, action.id)

        execute_action(db_session, action.id, ceo, default_executors(), metrics=metrics_registry)

        calls = []
        registry = ActionExecutorRegistry()
        registry.register("compras", "create_purchase_request", lambda db, a: calls.append(a.id) or {})
        monkeypatch.setattr(actions_module, "_load", lambda repo, action_id: stale)
        with pytest.raises(InvalidTransition):
            execute_action(db_session, action.id, ceo, registry, metrics=metrics_registry)

        assert calls == []
        assert db_session.query(PurchaseRequestDB).filter(
            PurchaseRequestDB.request_number == f"AI-{action.id:06d}"
        ).count() == 1

    def test_manager_cannot_execute(self, db_session, manager, metrics_registry):
        action = _propose(db_session, metrics_registry)
        with pytest.raises(PermissionDenied):
            execute_action(db_session, action.id, manager, default_executors(), metrics=metrics_registry)


class TestConcurrency:
    """Test racing callers on the same action."""

    def _race(self, session_factory, target, workers=8):
        """Run target(session) in parallel threads; return (successes, failures)."""
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def run():
            db = session_factory()
            try:
                barrier.wait()
                target(db)
                outcome = "ok"
            except InvalidTransition:
                outcome = "invalid"
            except Exception as e:
                outcome = f"{type(e).__name__}: {e}"
            finally:
                db.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return outcomes

    def test_concurrent_approvals_one_wins(self, file_session_factory, metrics_registry):
        db = file_session_factory()
        try:
            action = _propose(db, metrics_registry)
        finally:
            db.close()

        approvers = [Principal(user_id=f"ceo-{i}", role="ceo") for i in range(8)]
        counter = iter(approvers)
        pick = threading.Lock()

        def approve(session):
            with pick:
                principal = next(counter)
            approve_action(session, action.id, principal, metrics=metrics_registry)

        outcomes = self._race(file_session_factory, approve)
        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == 7

        db = file_session_factory()
        try:
            assert len(ActionRepository(db).get_decisions(action.id)) == 1
        finally:
            db.close()

    def test_concurrent_executions_run_executor_once(self, file_session_factory, ceo, metrics_registry):
        calls = []
        registry = ActionExecutorRegistry()
        registry.register("compras", "create_purchase_request", lambda db, action: calls.append(action.id) or {})

        db = file_session_factory()
        try:
            action = _propose(db, metrics_registry)
            approve_action(db, action.id, ceo, metrics=metrics_registry)
        finally:
            db.close()

        outcomes = self._race(
            file_session_factory,
            lambda session: execute_action(session, action.id, ceo, registry, metrics=metrics_registry),
        )
        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == 7
        assert calls == [action.id]

    def test_concurrent_executions_commit_mutation_once(self, file_session_factory, ceo, metrics_registry):
        db = file_session_factory()
        try:
            action = _propose(db, metrics_registry)
            approve_action(db, action.id, ceo, metrics=metrics_registry)
        finally:
            db.close()

        outcomes = self._race(
            file_session_factory,
            lambda session: execute_action(session, action.id, ceo, default_executors(), metrics=metrics_registry),
        )
        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == 7

        db = file_session_factory()
        try:
            assert db.query(PurchaseRequestDB).filter(
                PurchaseRequestDB.request_number == f"AI-{action.id:06d}"
            ).count() == 1
            decisions = [d["decision"] for d in ActionRepository(db).get_decisions(action.id)]
            assert decisions == ["approved", "executed"]
        finally:
            db.close()
