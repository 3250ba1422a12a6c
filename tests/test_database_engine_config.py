import os


def test_get_engine_kwargs_sqlite_has_check_same_thread(monkeypatch):
    # Import lazily so monkeypatch can affect env usage deterministically.
    from erpinsight.database import database as db

    kwargs = db.get_engine_kwargs("sqlite:///./erpinsight.db")
    assert "connect_args" in kwargs
    assert kwargs["connect_args"]["check_same_thread"] is False
    # SQLite should not require pool sizing knobs.
    assert "pool_size" not in kwargs
    assert "max_overflow" not in kwargs
    assert kwargs["pool_pre_ping"] is True


def test_get_engine_kwargs_postgres_has_conservative_pooling(monkeypatch):
    from erpinsight.database import database as db

    monkeypatch.setenv("DB_POOL_SIZE", "8")
    monkeypatch.setenv("DB_MAX_OVERFLOW", "2")
    monkeypatch.setenv("DB_POOL_TIMEOUT_SEC", "15")

    kwargs = db.get_engine_kwargs("postgresql+psycopg://u:p@localhost:5432/erp")
    assert "connect_args" not in kwargs
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_size"] == 8
    assert kwargs["max_overflow"] == 2
    assert kwargs["pool_timeout"] == 15


def test_debug_env_enables_echo(monkeypatch):
    from erpinsight.database import database as db

    monkeypatch.setenv("DEBUG", "true")
    assert db.get_engine_kwargs("sqlite:///./erpinsight.db")["echo"] is True
    monkeypatch.setenv("DEBUG", "false")
    assert db.get_engine_kwargs("sqlite:///./erpinsight.db")["echo"] is False


def test_sqlite_pragmas_listener_is_guarded():
    # Verify the helper used by the connect event guard behaves as expected.
    from erpinsight.database import database as db

    assert db._is_sqlite_url("sqlite:///./erpinsight.db") is True
    assert db._is_sqlite_url("postgresql+psycopg://u:p@localhost/erp") is False
    assert db._is_sqlite_url("") is False


def test_build_engine_creates_working_sqlite_engine(tmp_path):
    """A file-backed SQLite engine from build_engine accepts the schema."""
    from sqlalchemy import inspect
    from erpinsight.database import database as db
    from erpinsight.database import models, erp_models  # noqa: F401

    engine = db.build_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    try:
        db.Base.metadata.create_all(bind=engine)
        tables = set(inspect(engine).get_table_names())
        assert {"ai_events", "ai_insights", "ai_actions", "ai_audit_log", "ai_feature_flags"} <= tables
        assert os.path.exists(tmp_path / "engine.db")
    finally:
        engine.dispose()


def test_session_scope_closes_session(monkeypatch):
    from unittest.mock import MagicMock
    from erpinsight.database import database as db

    session = MagicMock()
    monkeypatch.setattr(db, "SessionLocal", lambda: session)

    with db.session_scope() as scoped:
        assert scoped is session
    session.close.assert_called_once()
