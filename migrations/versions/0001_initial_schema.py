"""initial_schema

Creates families, users, students, xp_transactions, lessons and the tutor
transcript tables from app/db/schema.sql.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Execute schema.sql statement by statement.

    The file only uses CREATE ... IF NOT EXISTS, so it is safe against an
    existing database.
    """
    schema_path = Path(__file__).resolve().parents[2] / "app" / "db" / "schema.sql"
    schema_sql = schema_path.read_text()
    # op.execute runs one statement at a time
    for statement in schema_sql.split(";"):
        lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        cleaned = "\n".join(lines).strip()
        if cleaned:
            op.execute(sa.text(cleaned))


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        "tutor_messages",
        "tutor_sessions",
        "lessons",
        "xp_transactions",
        "students",
        "users",
        "families",
    ):
        op.execute(sa.text(f"DROP TABLE IF EXISTS {table}"))
