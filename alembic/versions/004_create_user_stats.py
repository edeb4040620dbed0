"""004: create user_stats table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE user_stats (
            user_address        VARCHAR(64)     PRIMARY KEY,
            total_pnl           NUMERIC(20, 2)  NOT NULL DEFAULT 0,
            total_volume        NUMERIC(20, 2)  NOT NULL DEFAULT 0,
            markets_traded      INT             NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_stats_volume_gte_0   CHECK (total_volume >= 0),
            CONSTRAINT ck_user_stats_traded_gte_0   CHECK (markets_traded >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_user_stats_updated_at
            BEFORE UPDATE ON user_stats
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_stats CASCADE;")
