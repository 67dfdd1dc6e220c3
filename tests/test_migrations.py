from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text

from greenloop.database import Base
from greenloop.models import User, PointTransaction, PointEarningRule  # noqa: F401

ROOT = Path(__file__).resolve().parents[1]


def _upgrade(db_path: Path) -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    command.upgrade(cfg, "head")


def _schema(db_path: Path) -> dict:
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        inspector = inspect(engine)
        return {
            table: {col["name"] for col in inspector.get_columns(table)}
            for table in inspector.get_table_names()
        }
    finally:
        engine.dispose()


def test_upgrade_creates_ledger_schema(tmp_path):
    db_path = tmp_path / "fresh.db"

    _upgrade(db_path)

    schema = _schema(db_path)
    assert "version" in schema["users"]
    assert "version" in schema["point_earning_rules"]
    assert {"balance_before", "balance_after", "related_transaction_id"} <= schema["point_transactions"]


def test_upgrade_skips_tables_that_already_exist(tmp_path):
    db_path = tmp_path / "existing.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    engine.dispose()

    _upgrade(db_path)

    assert {"users", "point_earning_rules", "point_transactions", "alembic_version"} <= set(_schema(db_path))


def test_upgrade_adds_version_to_marketplace_users(tmp_path):
    db_path = tmp_path / "marketplace.db"
    engine = create_engine(f"sqlite:///{db_path}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE users ("
            "id VARCHAR(36) PRIMARY KEY, email VARCHAR(255) NOT NULL, full_name VARCHAR(200), "
            "sustainability_points INTEGER NOT NULL DEFAULT 0, is_admin BOOLEAN NOT NULL DEFAULT 0, "
            "is_staff BOOLEAN NOT NULL DEFAULT 0, is_active BOOLEAN NOT NULL DEFAULT 1, "
            "created_at DATETIME, updated_at DATETIME)"
        ))
        conn.execute(text("INSERT INTO users (id, email) VALUES ('u1', 'shopper@greenloop.test')"))

    _upgrade(db_path)

    with engine.connect() as conn:
        assert conn.execute(text("SELECT version FROM users WHERE id = 'u1'")).scalar() == 1
    engine.dispose()
