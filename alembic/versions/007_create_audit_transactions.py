"""007: create audit_transactions table

Revision ID: 007
Revises: 006
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE audit_transactions (
            id              BIGSERIAL       PRIMARY KEY,
            owner_id        VARCHAR(64)     NOT NULL,
            entry_type      VARCHAR(30)     NOT NULL,
            amount          NUMERIC(18,2)   NOT NULL,
            balance_after   NUMERIC(18,2)   NOT NULL,
            reference_type  VARCHAR(30)     NOT NULL,
            reference_id    VARCHAR(64)     NOT NULL,
            description     VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_audit_entry_type CHECK (
                entry_type IN ('PROFIT', 'PRINCIPAL_RETURN')
            ),
            CONSTRAINT ck_audit_balance_gte_0 CHECK (balance_after >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_audit_owner_time ON audit_transactions (owner_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_audit_reference
        ON audit_transactions (reference_type, reference_id);
    """)
    op.execute("""
        CREATE TRIGGER trg_audit_transactions_append_only
            BEFORE UPDATE OR DELETE ON audit_transactions
            FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)
    op.execute("COMMENT ON TABLE audit_transactions IS 'Balance mutation ledger — Append-Only, never updated or deleted';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_transactions CASCADE;")
