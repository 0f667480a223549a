"""005: create timed_positions table

Revision ID: 005
Revises: 004
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE timed_positions (
            id                      UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id                VARCHAR(64)     NOT NULL,
            plan_id                 UUID            REFERENCES yield_plans(id),
            period_kind             VARCHAR(10)     NOT NULL,
            principal_amount        NUMERIC(18,2)   NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            start_time              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            end_time                TIMESTAMPTZ,
            total_profit_accrued    NUMERIC(18,2)   NOT NULL DEFAULT 0,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_timed_positions_kind      CHECK (period_kind IN ('DAILY', 'HOURLY')),
            CONSTRAINT ck_timed_positions_status    CHECK (status IN ('ACTIVE', 'COMPLETED', 'CANCELLED')),
            CONSTRAINT ck_timed_positions_principal_gt_0 CHECK (principal_amount > 0),
            CONSTRAINT ck_timed_positions_profit_gte_0   CHECK (total_profit_accrued >= 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_timed_positions_active
        ON timed_positions (period_kind, start_time)
        WHERE status = 'ACTIVE';
    """)
    op.execute("CREATE INDEX idx_timed_positions_owner ON timed_positions (owner_id);")
    op.execute("""
        CREATE TRIGGER trg_timed_positions_updated_at
            BEFORE UPDATE ON timed_positions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE timed_positions IS 'Daily investments and hourly live trades — never deleted';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS timed_positions CASCADE;")
