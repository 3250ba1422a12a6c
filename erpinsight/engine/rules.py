"""Monitoring rules over ERP business tables.

Each rule reads current state and returns insight candidates; persistence and
deduplication happen in `erpinsight.engine.insights`. Rules are pure reads and
safe to run any number of times.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from erpinsight.models.insight import ActionProposal, InsightCandidate, InsightSeverity
from erpinsight.models.constants import (
    EXPIRY_WARNING_DAYS,
    EXPIRY_WINDOW_DAYS,
    NC_CRITICAL_DAYS,
    NC_MIN_OPEN_DAYS,
    PAYABLE_CRITICAL_DAYS,
    PRODUCER_PAYMENT_CRITICAL_DAYS,
    PURCHASE_MIN_PENDING_DAYS,
    PURCHASE_WARNING_DAYS,
    STOCK_CRITICAL_RATIO,
)
from erpinsight.database.erp_models import (
    FinancialEntryDB,
    FinishedGoodsInventoryDB,
    NonConformityDB,
    ProducerPayableDB,
    PurchaseRequestDB,
    WarehouseItemDB,
)

logger = logging.getLogger(__name__)


RECORD_ERRORS = (ArithmeticError, LookupError, TypeError, ValueError)


class RuleScan(list):
    """Candidates from one rule, plus the records that could not be turned into one."""

    def __init__(self, candidates=(), errors: Optional[List[str]] = None):
        super().__init__(candidates)
        self.errors: List[str] = list(errors or [])


Rule = Callable[[Session, datetime], List[InsightCandidate]]


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from `earlier` to `later`, rounded up."""
    return math.ceil((later - earlier).total_seconds() / 86400)


def _money(value) -> str:
    return f"R$ {float(value or 0):.2f}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def scan_records(db: Session, model: Any, criteria: List[Any], entity_type: str,
                 build: Callable[[Any, datetime], InsightCandidate], now: datetime) -> RuleScan:
    """Build one candidate per matching row, loading rows one at a time.

    Matching ids are selected first so a row whose columns cannot be read or
    whose values break `build` is reported in `errors` and the scan goes on.
    """
    scan = RuleScan()
    ids = [row_id for (row_id,) in db.query(model.id).filter(*criteria).order_by(model.id).all()]
    for row_id in ids:
        try:
            scan.append(build(db.get(model, row_id), now))
        except RECORD_ERRORS as e:
            logger.warning(f"Skipping {entity_type}#{row_id}: {type(e).__name__}: {str(e)}")
            scan.errors.append(f"{entity_type}#{row_id}: {type(e).__name__}: {str(e)}")
    return scan


def _stock_candidate(item: WarehouseItemDB, now: datetime) -> InsightCandidate:
    current = float(item.current_stock or 0)
    minimum = float(item.minimum_stock or 0)
    percent = round(current / minimum * 100) if minimum else 0
    suggested_quantity = max(minimum * 2 - current, minimum)
    return InsightCandidate(
        insight_type="stock_critical",
        severity=InsightSeverity.CRITICAL,
        title=f"Estoque crítico: {item.name}",
        summary=(
            f'O item "{item.name}" está com apenas {percent}% do estoque mínimo '
            f"({current:g} {item.unit} de {minimum:g} {item.unit} necessários)."
        ),
        details={
            "item_id": item.id,
            "item_name": item.name,
            "current_stock": current,
            "minimum_stock": minimum,
            "unit": item.unit,
            "stock_percent": percent,
        },
        module="almoxarifado",
        entity_type="warehouse_item",
        entity_id=item.id,
        proposal=ActionProposal(
            action_type="purchase_request",
            title=f"Solicitar compra de {item.name}",
            description=f"Repor {suggested_quantity:g} {item.unit} de {item.name}.",
            target_module="compras",
            target_mutation="create_purchase_request",
            payload={
                "warehouse_item_id": item.id,
                "quantity": suggested_quantity,
                "unit": item.unit,
                "urgency": "alta",
            },
        ),
    )


def check_critical_stock(db: Session, now: datetime) -> RuleScan:
    """Active warehouse items at or below half of their minimum stock."""
    return scan_records(db, WarehouseItemDB, [
        WarehouseItemDB.status == "ativo",
        WarehouseItemDB.current_stock <= WarehouseItemDB.minimum_stock * STOCK_CRITICAL_RATIO,
    ], "warehouse_item", _stock_candidate, now)


def _producer_payment_candidate(payable: ProducerPayableDB, now: datetime) -> InsightCandidate:
    days_overdue = max(0, days_between(payable.due_date, now))
    severity = InsightSeverity.CRITICAL if days_overdue > PRODUCER_PAYMENT_CRITICAL_DAYS else InsightSeverity.WARNING
    return InsightCandidate(
        insight_type="payment_overdue",
        severity=severity,
        title=f"Pagamento atrasado há {days_overdue} dias",
        summary=(
            f"Pagamento de {_money(payable.total_value)} ao produtor está atrasado há "
            f"{days_overdue} dias (vencimento: {payable.due_date:%d/%m/%Y})."
        ),
        details={
            "payable_id": payable.id,
            "producer_id": payable.producer_id,
            "total_value": float(payable.total_value or 0),
            "due_date": _iso(payable.due_date),
            "days_overdue": days_overdue,
        },
        module="pagamentos",
        entity_type="producer_payable",
        entity_id=payable.id,
        proposal=ActionProposal(
            action_type="schedule_payment",
            title=f"Agendar pagamento ao produtor #{payable.producer_id}",
            description=f"Agendar pagamento de {_money(payable.total_value)} em atraso.",
            target_module="pagamentos",
            target_mutation="schedule_payment",
            payload={"payable_id": payable.id, "producer_id": payable.producer_id},
        ),
    )


def check_overdue_producer_payments(db: Session, now: datetime) -> RuleScan:
    """Pending producer payables due on or before now."""
    return scan_records(db, ProducerPayableDB, [
        ProducerPayableDB.status == "pendente",
        ProducerPayableDB.due_date.isnot(None),
        ProducerPayableDB.due_date <= now,
    ], "producer_payable", _producer_payment_candidate, now)


def _expiring_batch_candidate(batch: FinishedGoodsInventoryDB, now: datetime) -> InsightCandidate:
    days_to_expire = days_between(now, batch.expiration_date)
    expired = days_to_expire <= 0
    if expired:
        severity = InsightSeverity.CRITICAL
        title = f"Produto vencido: Lote {batch.batch_number}"
    else:
        severity = InsightSeverity.WARNING if days_to_expire <= EXPIRY_WARNING_DAYS else InsightSeverity.INFO
        title = f"Produto vence em {days_to_expire} dias: Lote {batch.batch_number}"
    description = batch.sku_description or "Produto"
    quantity = float(batch.quantity or 0)
    return InsightCandidate(
        insight_type="product_expiring",
        severity=severity,
        title=title,
        summary=(
            f"{description} - Lote {batch.batch_number} com {quantity:g} unidades "
            + ("venceu." if expired else f"vence em {batch.expiration_date:%d/%m/%Y}.")
        ),
        details={
            "inventory_id": batch.id,
            "sku_id": batch.sku_id,
            "sku_description": batch.sku_description,
            "batch_number": batch.batch_number,
            "quantity": quantity,
            "expiration_date": _iso(batch.expiration_date),
            "days_to_expire": days_to_expire,
            "expired": expired,
        },
        module="estoque_pa",
        entity_type="finished_goods_inventory",
        entity_id=batch.id,
    )


def check_expiring_batches(db: Session, now: datetime) -> RuleScan:
    """Available finished goods expiring within the window, or already expired.

    Expired batches keep the `product_expiring` type so a batch crossing its
    expiry date refreshes its existing insight instead of opening a second one.
    """
    horizon = now + timedelta(days=EXPIRY_WINDOW_DAYS)
    return scan_records(db, FinishedGoodsInventoryDB, [
        FinishedGoodsInventoryDB.status == "disponivel",
        FinishedGoodsInventoryDB.expiration_date <= horizon,
    ], "finished_goods_inventory", _expiring_batch_candidate, now)


def _payable_candidate(entry: FinancialEntryDB, now: datetime) -> InsightCandidate:
    days_overdue = max(0, days_between(entry.due_date, now))
    return InsightCandidate(
        insight_type="payable_overdue",
        severity=InsightSeverity.CRITICAL if days_overdue > PAYABLE_CRITICAL_DAYS else InsightSeverity.WARNING,
        title=f"Conta a pagar vencida: {entry.description}",
        summary=(
            f'"{entry.description}" - {_money(entry.value)} venceu em '
            f"{entry.due_date:%d/%m/%Y} ({days_overdue} dias atrás)."
        ),
        details={
            "entry_id": entry.id,
            "description": entry.description,
            "value": float(entry.value or 0),
            "due_date": _iso(entry.due_date),
            "days_overdue": days_overdue,
        },
        module="financeiro",
        entity_type="financial_entry",
        entity_id=entry.id,
    )


def check_overdue_payables(db: Session, now: datetime) -> RuleScan:
    """Pending accounts payable past their due date."""
    return scan_records(db, FinancialEntryDB, [
        FinancialEntryDB.entry_type == "pagar",
        FinancialEntryDB.status == "pendente",
        FinancialEntryDB.due_date <= now,
    ], "financial_entry", _payable_candidate, now)


def _non_conformity_candidate(nc: NonConformityDB, now: datetime) -> InsightCandidate:
    days_open = days_between(nc.identification_date, now)
    return InsightCandidate(
        insight_type="nc_open_too_long",
        severity=InsightSeverity.CRITICAL if days_open > NC_CRITICAL_DAYS else InsightSeverity.WARNING,
        title=f"NC {nc.nc_number} aberta há {days_open} dias",
        summary=(
            f'Não conformidade "{nc.nc_number}" na área de {nc.area or "-"} '
            f"está aberta há {days_open} dias sem resolução."
        ),
        details={
            "nc_id": nc.id,
            "nc_number": nc.nc_number,
            "area": nc.area,
            "origin": nc.origin,
            "days_open": days_open,
            "identification_date": _iso(nc.identification_date),
        },
        module="qualidade",
        entity_type="non_conformity",
        entity_id=nc.id,
    )


def check_open_non_conformities(db: Session, now: datetime) -> RuleScan:
    """Non-conformities still open a week after identification."""
    threshold = now - timedelta(days=NC_MIN_OPEN_DAYS)
    return scan_records(db, NonConformityDB, [
        NonConformityDB.status == "aberta",
        NonConformityDB.identification_date <= threshold,
    ], "non_conformity", _non_conformity_candidate, now)


def _purchase_request_candidate(request: PurchaseRequestDB, now: datetime) -> InsightCandidate:
    days_pending = days_between(request.created_at, now)
    return InsightCandidate(
        insight_type="purchase_pending_approval",
        severity=InsightSeverity.WARNING if days_pending > PURCHASE_WARNING_DAYS else InsightSeverity.INFO,
        title=f"Solicitação de compra pendente há {days_pending} dias",
        summary=(
            f'Solicitação "{request.request_number}" do setor {request.sector or "-"} '
            f"aguarda aprovação há {days_pending} dias."
        ),
        details={
            "request_id": request.id,
            "request_number": request.request_number,
            "sector": request.sector,
            "urgency": request.urgency,
            "days_pending": days_pending,
            "created_at": _iso(request.created_at),
        },
        module="compras",
        entity_type="purchase_request",
        entity_id=request.id,
    )


def check_pending_purchase_requests(db: Session, now: datetime) -> RuleScan:
    """Purchase requests waiting for approval for several days."""
    threshold = now - timedelta(days=PURCHASE_MIN_PENDING_DAYS)
    return scan_records(db, PurchaseRequestDB, [
        PurchaseRequestDB.status == "solicitado",
        PurchaseRequestDB.created_at <= threshold,
    ], "purchase_request", _purchase_request_candidate, now)


class RuleRegistry:
    """Ordered, named set of rules."""

    def __init__(self):
        self._rules: Dict[str, Rule] = {}

    def register(self, name: str, rule: Rule) -> None:
        self._rules[name] = rule

    def unregister(self, name: str) -> None:
        self._rules.pop(name, None)

    def get(self, name: str) -> Optional[Rule]:
        return self._rules.get(name)

    def names(self) -> List[str]:
        return list(self._rules)

    def items(self):
        return list(self._rules.items())


def default_rules() -> RuleRegistry:
    registry = RuleRegistry()
    registry.register("critical_stock", check_critical_stock)
    registry.register("overdue_producer_payments", check_overdue_producer_payments)
    registry.register("expiring_batches", check_expiring_batches)
    registry.register("overdue_payables", check_overdue_payables)
    registry.register("open_non_conformities", check_open_non_conformities)
    registry.register("pending_purchase_requests", check_pending_purchase_requests)
    return registry
