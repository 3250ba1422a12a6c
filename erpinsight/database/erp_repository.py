"""Read-only queries over ERP business tables and assistant counters."""

from datetime import datetime
from typing import Any, Dict
from sqlalchemy.orm import Session
from sqlalchemy import func

from erpinsight.models.constants import STOCK_CRITICAL_RATIO
from erpinsight.database.models import ConversationDB, MessageDB
from erpinsight.database.erp_models import (
    WarehouseItemDB,
    ProducerPayableDB,
    FinancialEntryDB,
    NonConformityDB,
    PurchaseRequestDB,
)


class ErpRepository:
    """Aggregates used by the context builder and stats."""

    def __init__(self, db: Session):
        self.db = db

    def pending_producer_payables(self) -> Dict[str, Any]:
        count, total = self.db.query(
            func.count(ProducerPayableDB.id),
            func.coalesce(func.sum(ProducerPayableDB.total_value), 0),
        ).filter(ProducerPayableDB.status == "pendente").one()
        return {"count": count or 0, "total_value": float(total or 0)}

    def low_stock_items(self) -> Dict[str, int]:
        base = self.db.query(func.count(WarehouseItemDB.id)).filter(WarehouseItemDB.status == "ativo")
        low = base.filter(WarehouseItemDB.current_stock <= WarehouseItemDB.minimum_stock).scalar() or 0
        critical = base.filter(
            WarehouseItemDB.current_stock <= WarehouseItemDB.minimum_stock * STOCK_CRITICAL_RATIO
        ).scalar() or 0
        return {"low": low, "critical": critical}

    def open_non_conformities(self) -> int:
        return self.db.query(func.count(NonConformityDB.id)).filter(
            NonConformityDB.status == "aberta",
        ).scalar() or 0

    def pending_purchase_requests(self) -> int:
        return self.db.query(func.count(PurchaseRequestDB.id)).filter(
            PurchaseRequestDB.status == "solicitado",
        ).scalar() or 0

    def overdue_payables(self, now: datetime) -> Dict[str, Any]:
        count, total = self.db.query(
            func.count(FinancialEntryDB.id),
            func.coalesce(func.sum(FinancialEntryDB.value), 0),
        ).filter(
            FinancialEntryDB.entry_type == "pagar",
            FinancialEntryDB.status == "pendente",
            FinancialEntryDB.due_date < now,
        ).one()
        return {"count": count or 0, "total_value": float(total or 0)}

    def count_conversations(self, user_id: str) -> int:
        return self.db.query(func.count(ConversationDB.id)).filter(
            ConversationDB.user_id == user_id,
        ).scalar() or 0

    def count_messages(self, user_id: str) -> int:
        """Messages in the user's conversations."""
        return self.db.query(func.count(MessageDB.id)).join(
            ConversationDB, MessageDB.conversation_id == ConversationDB.id,
        ).filter(ConversationDB.user_id == user_id).scalar() or 0
