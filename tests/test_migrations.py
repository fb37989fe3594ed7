"""
Tests for the subscription column migration script
"""
from sqlalchemy import create_engine, inspect, text

import migrate_subscription_columns as migration


def test_adds_missing_columns_to_legacy_table(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, email VARCHAR NOT NULL)"))
        conn.execute(text("INSERT INTO users (id, email) VALUES (1, 'aluno@example.com')"))
    monkeypatch.setattr(migration, "engine", engine)

    migration.add_subscription_columns()
    # Running again leaves the table alone.
    migration.add_subscription_columns()

    inspector = inspect(engine)
    columns = {column["name"] for column in inspector.get_columns("users")}
    assert set(migration.SUBSCRIPTION_COLUMNS) <= columns
    indexes = {index["name"] for index in inspector.get_indexes("users")}
    assert {"ix_users_subscription_external_id", "ix_users_subscription_status"} <= indexes

    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT subscription_active, subscription_status, subscription_in_progress FROM users WHERE id = 1")
        ).one()
    assert tuple(row) == (0, "inactive", 0)
    engine.dispose()
