"""ERP business tables read by the insight rules.

Only the columns the rules and the context builder read are mapped; the ERP owns
the rest of each table.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, Numeric, DateTime

from erpinsight.database.database import Base


class WarehouseItemDB(Base):
    __tablename__ = "warehouse_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    unit = Column(String(20), nullable=False, default="un")
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    minimum_stock = Column(Numeric(14, 3), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="ativo", index=True)


class ProducerPayableDB(Base):
    __tablename__ = "producer_payables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, nullable=False, index=True)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    due_date = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="pendente", index=True)


class FinishedGoodsInventoryDB(Base):
    __tablename__ = "finished_goods_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sku_id = Column(Integer, nullable=True)
    sku_description = Column(String(255), nullable=True)
    batch_number = Column(String(50), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False, default=0)
    expiration_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="disponivel", index=True)


class FinancialEntryDB(Base):
    __tablename__ = "financial_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_type = Column(String(20), nullable=False)  # pagar | receber
    description = Column(String(255), nullable=False)
    value = Column(Numeric(14, 2), nullable=False, default=0)
    due_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="pendente", index=True)


class NonConformityDB(Base):
    __tablename__ = "non_conformities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nc_number = Column(String(50), nullable=False)
    area = Column(String(100), nullable=True)
    origin = Column(String(100), nullable=True)
    identification_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="aberta", index=True)


class PurchaseRequestDB(Base):
    __tablename__ = "purchase_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_number = Column(String(50), nullable=False)
    sector = Column(String(100), nullable=True)
    urgency = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="solicitado", index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class UserDB(Base):
    """ERP user directory, read for notification recipients."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="user")
