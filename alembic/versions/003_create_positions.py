"""003: create positions table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE positions (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_address        VARCHAR(64)     NOT NULL,
            market_id           VARCHAR(64)     NOT NULL REFERENCES markets (id),
            outcome             VARCHAR(32)     NOT NULL,
            shares              NUMERIC(20, 4)  NOT NULL,
            average_price       NUMERIC(10, 4)  NOT NULL,
            total_cost          NUMERIC(20, 2)  NOT NULL,
            unrealized_pnl      NUMERIC(20, 2)  NOT NULL DEFAULT 0,
            realized_pnl        NUMERIC(20, 2)  NOT NULL DEFAULT 0,
            status              VARCHAR(10)     NOT NULL DEFAULT 'open',
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            closed_at           TIMESTAMPTZ,
            CONSTRAINT ck_positions_shares_gt_0     CHECK (shares > 0),
            CONSTRAINT ck_positions_cost_gte_0      CHECK (total_cost >= 0),
            CONSTRAINT ck_positions_status          CHECK (status IN ('open', 'closed')),
            CONSTRAINT ck_positions_closed_at CHECK (
                (status = 'closed') = (closed_at IS NOT NULL)
            )
        );
    """)
    # At most one open position per (user, market, outcome); trades merge into it
    op.execute("""
        CREATE UNIQUE INDEX uq_positions_open
            ON positions (user_address, market_id, outcome)
            WHERE status = 'open';
    """)
    op.execute("CREATE INDEX idx_positions_market_status ON positions (market_id, status);")
    op.execute("CREATE INDEX idx_positions_user ON positions (user_address);")
    op.execute("COMMENT ON TABLE positions IS 'User holdings per outcome; closed exactly once';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS positions CASCADE;")
