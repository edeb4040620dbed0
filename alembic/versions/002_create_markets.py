"""002: create markets table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE markets (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::text,
            chain_id            INT,
            question            TEXT            NOT NULL,
            description         TEXT,
            category            VARCHAR(64)     NOT NULL DEFAULT 'Uncategorized',
            outcomes            JSONB           NOT NULL DEFAULT '["Yes", "No"]'::jsonb,
            closing_time        TIMESTAMPTZ     NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'active',
            resolved_outcome    INT,
            resolution_time     TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_markets_chain_id UNIQUE (chain_id),
            CONSTRAINT ck_markets_status CHECK (
                status IN ('active', 'closed', 'resolved', 'invalid')
            ),
            CONSTRAINT ck_markets_resolution CHECK (
                (status = 'resolved') = (resolved_outcome IS NOT NULL)
            ),
            CONSTRAINT ck_markets_outcome_index CHECK (
                resolved_outcome IS NULL OR resolved_outcome IN (0, 1)
            )
        );
    """)
    op.execute("CREATE INDEX idx_markets_status ON markets (status);")
    op.execute("""
        CREATE TRIGGER trg_markets_updated_at
            BEFORE UPDATE ON markets
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE markets IS 'Local mirror of ledger markets; status only moves forward';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS markets CASCADE;")
