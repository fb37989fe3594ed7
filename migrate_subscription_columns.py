"""
Script to add the subscription record columns to an existing users table.
Safe to run more than once; existing columns are left alone.
"""
import os
from sqlalchemy import create_engine, text
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quimita.db")

engine = create_engine(
    DATABASE_URL, connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
)

SUBSCRIPTION_COLUMNS = {
    "subscription_active": "BOOLEAN NOT NULL DEFAULT FALSE",
    "subscription_status": "VARCHAR NOT NULL DEFAULT 'inactive'",
    "subscription_external_id": "VARCHAR",
    "subscription_in_progress": "BOOLEAN NOT NULL DEFAULT FALSE",
    "subscription_created_at": "TIMESTAMP",
    "subscription_updated_at": "TIMESTAMP",
}


def _get_table_columns(conn, table_name: str):
    if engine.dialect.name == "sqlite":
        result = conn.execute(text(f"PRAGMA table_info({table_name})"))
        return {row[1] for row in result}

    result = conn.execute(
        text(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = :table_name
            """
        ),
        {"table_name": table_name},
    )
    return {row[0] for row in result}


def add_subscription_columns():
    """Add subscription columns and the agreement id index to users."""
    with engine.begin() as conn:
        columns = _get_table_columns(conn, "users")

        for column, ddl in SUBSCRIPTION_COLUMNS.items():
            if column in columns:
                print(f"✓ {column} column already exists")
                continue
            conn.execute(text(f"ALTER TABLE users ADD COLUMN {column} {ddl}"))
            print(f"✓ Added {column} column")

        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS ix_users_subscription_external_id "
                "ON users (subscription_external_id)"
            )
        )
        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS ix_users_subscription_status "
                "ON users (subscription_status)"
            )
        )

    print("\n✓ Subscription columns are up to date.")


if __name__ == "__main__":
    add_subscription_columns()
