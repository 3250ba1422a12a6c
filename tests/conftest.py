"""Pytest fixtures and configuration for the insight engine tests."""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from erpinsight.database.database import Base, get_db
from erpinsight.database import models, erp_models  # noqa: F401
from erpinsight.database.erp_models import (
    FinancialEntryDB,
    FinishedGoodsInventoryDB,
    NonConformityDB,
    ProducerPayableDB,
    PurchaseRequestDB,
    UserDB,
    WarehouseItemDB,
)
from erpinsight.database.event_repository import EventRepository
from erpinsight.database.insight_repository import InsightRepository
from erpinsight.database.action_repository import ActionRepository
from erpinsight.models.user import Principal
from erpinsight.observability.metrics import MetricsRegistry
from erpinsight.security.audit import AuditLogger
from erpinsight.security.feature_flags import FeatureFlagRegistry, InMemoryFeatureFlagStore
from erpinsight.security.gate import SecurityGate
from erpinsight.security.rate_limit import RateLimiter


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine, created fresh for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite sessions, one connection per session, for threaded tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'threads.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def now():
    """Fixed clock for rule and expiry tests (a Tuesday)."""
    return datetime(2026, 3, 10, 9, 0, 0)


@pytest.fixture
def event_repository(db_session: Session):
    return EventRepository(db_session)


@pytest.fixture
def insight_repository(db_session: Session):
    return InsightRepository(db_session)


@pytest.fixture
def action_repository(db_session: Session):
    return ActionRepository(db_session)


@pytest.fixture
def metrics_registry():
    """Fresh metrics registry, isolated from the process-wide default."""
    return MetricsRegistry()


@pytest.fixture
def flags():
    """Feature flags with the default restrictions, kept in memory."""
    return FeatureFlagRegistry(InMemoryFeatureFlagStore())


@pytest.fixture
def rate_limiter():
    return RateLimiter()


@pytest.fixture
def audit_logger(session_factory, metrics_registry):
    return AuditLogger(session_factory, metrics_registry)


@pytest.fixture
def gate(flags, rate_limiter, audit_logger):
    return SecurityGate(flags, rate_limiter, audit_logger)


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", role="admin", name="Admin")


@pytest.fixture
def ceo():
    return Principal(user_id="ceo-1", role="ceo", name="CEO")


@pytest.fixture
def manager():
    return Principal(user_id="manager-1", role="manager", name="Manager")


@pytest.fixture
def operator():
    return Principal(user_id="operator-1", role="operator", name="Operator")


@pytest.fixture
def plain_user():
    return Principal(user_id="user-1", role="user", name="User")


@pytest.fixture
def erp_data(db_session: Session, now):
    """One record per rule, each past its threshold relative to `now`.

    Returns a dict of the created rows by rule name.
    """
    rows = {
        "critical_stock": WarehouseItemDB(
            name="Coco seco", unit="kg", current_stock=40, minimum_stock=100, status="ativo",
        ),
        "healthy_stock": WarehouseItemDB(
            name="Embalagem 1L", unit="un", current_stock=500, minimum_stock=100, status="ativo",
        ),
        "overdue_producer_payment": ProducerPayableDB(
            producer_id=7, total_value=1500, due_date=now - timedelta(days=10), status="pendente",
        ),
        "expiring_batch": FinishedGoodsInventoryDB(
            sku_id=3, sku_description="Água de coco 1L", batch_number="L-001",
            quantity=120, expiration_date=now + timedelta(days=5), status="disponivel",
        ),
        "overdue_payable": FinancialEntryDB(
            entry_type="pagar", description="Energia elétrica", value=820,
            due_date=now - timedelta(days=3), status="pendente",
        ),
        "open_nc": NonConformityDB(
            nc_number="NC-12", area="Envase", origin="auditoria",
            identification_date=now - timedelta(days=20), status="aberta",
        ),
        "pending_purchase": PurchaseRequestDB(
            request_number="SC-99", sector="Manutenção", urgency="normal",
            status="solicitado", created_at=now - timedelta(days=4),
        ),
    }
    db_session.add_all(rows.values())
    db_session.add_all([
        UserDB(id="ceo-1", name="CEO", email="ceo@example.com", role="ceo"),
        UserDB(id="admin-1", name="Admin", email="admin@example.com", role="admin"),
        UserDB(id="operator-1", name="Operator", email="op@example.com", role="operator"),
    ])
    db_session.commit()
    return rows


class Caller:
    """Mutable identity returned by the overridden authentication dependency."""

    def __init__(self, principal: Principal):
        self.principal = principal

    def use(self, role: str, user_id: str = None) -> Principal:
        self.principal = Principal(user_id=user_id or f"{role}-1", role=role)
        return self.principal


@pytest.fixture
def caller(admin):
    return Caller(admin)


@pytest.fixture
def test_client(db_session: Session, caller, gate, flags):
    """FastAPI test client with database, authentication and security overridden."""
    from erpinsight.api.app import app, get_flags, get_gate
    from erpinsight.auth.dependencies import get_current_principal

    # Override the get_db dependency to use our test database session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = lambda: caller.principal
    app.dependency_overrides[get_flags] = lambda: flags
    app.dependency_overrides[get_gate] = lambda: gate

    # No context manager: the lifespan would start the background tickers.
    client = TestClient(app)
    try:
        yield client
    finally:
        # Clean up dependency overrides
        app.dependency_overrides.clear()
