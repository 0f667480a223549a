"""006: create distribution_records table

Revision ID: 006
Revises: 005
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE distribution_records (
            id              BIGSERIAL       PRIMARY KEY,
            position_id     UUID            NOT NULL REFERENCES timed_positions(id),
            period_index    INT             NOT NULL,
            period_amount   NUMERIC(18,2)   NOT NULL,
            credited_at     TIMESTAMPTZ     NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_distribution_position_period UNIQUE (position_id, period_index),
            CONSTRAINT ck_distribution_period_gte_1    CHECK (period_index >= 1),
            CONSTRAINT ck_distribution_amount_gte_0    CHECK (period_amount >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_distribution_records_append_only
            BEFORE UPDATE OR DELETE ON distribution_records
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)
    op.execute("COMMENT ON TABLE distribution_records IS 'One row per paid period — Append-Only; the UNIQUE key is the only concurrency guard';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS distribution_records CASCADE;")
