"""004: create yield_plans table

Revision ID: 004
Revises: 003
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE yield_plans (
            id              UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            name            VARCHAR(100)    NOT NULL,
            period_kind     VARCHAR(10)     NOT NULL,
            rate_per_period NUMERIC(10,6)   NOT NULL,
            total_periods   INT             NOT NULL,
            min_amount      NUMERIC(18,2)   NOT NULL,
            max_amount      NUMERIC(18,2),
            is_active       BOOLEAN         NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_yield_plans_kind      CHECK (period_kind IN ('DAILY', 'HOURLY')),
            CONSTRAINT ck_yield_plans_rate_gt_0 CHECK (rate_per_period > 0),
            CONSTRAINT ck_yield_plans_total_gt_0 CHECK (total_periods > 0),
            CONSTRAINT ck_yield_plans_min_gt_0  CHECK (min_amount > 0),
            CONSTRAINT ck_yield_plans_max_gte_min CHECK (max_amount IS NULL OR max_amount >= min_amount)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_yield_plans_updated_at
            BEFORE UPDATE ON yield_plans
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE yield_plans IS 'Plan catalogue — rate and duration source for positions';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS yield_plans CASCADE;")
