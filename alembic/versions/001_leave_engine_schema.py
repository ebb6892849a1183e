"""001 – Leave engine schema: org, leave requests, balances, ledger, notifications, audit.

Revision ID: 001_leave_engine_schema
Revises:
Create Date: 2026-10-16 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_leave_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

LEAVE_TYPES = ("CASUAL", "SICK", "ANNUAL")
LEAVE_STATUSES = (
    "PENDING", "LEAD_APPROVED", "HR_APPROVED", "APPROVED", "REJECTED", "CANCELLED",
)


def _in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL UNIQUE,
            code        VARCHAR(20) UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code        VARCHAR(20)  NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            display_name         VARCHAR(255),
            email                VARCHAR(255) NOT NULL UNIQUE,
            department_id        UUID REFERENCES departments(id),
            reporting_manager_id UUID REFERENCES employees(id),
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_employees_manager ON employees (reporting_manager_id)")

    # ── 3. leave_requests ─────────────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE leave_requests (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id            UUID NOT NULL REFERENCES employees(id),
            leave_type             VARCHAR(10) NOT NULL CHECK (leave_type IN ({_in(LEAVE_TYPES)})),
            start_date             DATE NOT NULL,
            end_date               DATE NOT NULL,
            reason                 TEXT NOT NULL,
            transition_plan        TEXT,
            cover_person_id        UUID REFERENCES employees(id),
            additional_notify_ids  JSONB NOT NULL DEFAULT '[]'::jsonb,
            lead_approval_required BOOLEAN NOT NULL,
            lead_id                UUID,
            lead_approved_by       UUID,
            lead_approved_at       TIMESTAMPTZ,
            lead_comment           TEXT,
            hr_approved_by         UUID,
            hr_approved_at         TIMESTAMPTZ,
            hr_comment             TEXT,
            rejected_by            UUID,
            rejected_at            TIMESTAMPTZ,
            rejection_reason       TEXT,
            cancelled_by           UUID,
            cancelled_at           TIMESTAMPTZ,
            status                 VARCHAR(20) NOT NULL DEFAULT 'PENDING'
                                   CHECK (status IN ({_in(LEAVE_STATUSES)})),
            submitted_by           UUID,
            version                INTEGER NOT NULL,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_range CHECK (end_date >= start_date)
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_employee ON leave_requests (employee_id)")
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests (status)")
    op.execute("CREATE INDEX ix_leave_requests_dates ON leave_requests (start_date, end_date)")
    op.execute("CREATE INDEX ix_leave_requests_lead ON leave_requests (lead_id)")

    # ── 4. leave_balances ─────────────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL REFERENCES employees(id),
            leave_type      VARCHAR(10) NOT NULL CHECK (leave_type IN ({_in(LEAVE_TYPES)})),
            year            INTEGER NOT NULL,
            allocated_days  NUMERIC(5,1) NOT NULL DEFAULT 0,
            used_days       NUMERIC(5,1) NOT NULL DEFAULT 0,
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type, year)
        )
    """)

    # ── 5. leave_ledger_entries (no FK to leave_requests) ─────────────────
    op.execute(f"""
        CREATE TABLE leave_ledger_entries (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id    UUID NOT NULL,
            employee_id   UUID NOT NULL REFERENCES employees(id),
            leave_type    VARCHAR(10) NOT NULL CHECK (leave_type IN ({_in(LEAVE_TYPES)})),
            entry_type    VARCHAR(10) NOT NULL CHECK (entry_type IN ('DEBIT', 'CREDIT')),
            total_days    NUMERIC(5,1) NOT NULL,
            days_by_year  JSONB NOT NULL,
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_ledger_request_entry UNIQUE (request_id, entry_type)
        )
    """)

    # ── 6. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            kind          VARCHAR(40) NOT NULL,
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            action_url    VARCHAR(500),
            entity_type   VARCHAR(50),
            entity_id     UUID,
            is_read       BOOLEAN DEFAULT FALSE,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_notifications_recipient ON notifications (recipient_id, is_read)")

    # ── 7. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "leave_ledger_entries",
        "leave_balances",
        "leave_requests",
        "employees",
        "departments",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
