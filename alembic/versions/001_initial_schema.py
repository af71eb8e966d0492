"""001 – Initial schema: employees, benefit configs, benefit periods, deductions.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000-03:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("employment_status", ["active", "notice_period", "relieved", "on_leave"]),
    ("employment_type", ["CLT", "PJ", "intern", "contractor"]),
    (
        "notification_type",
        ["info", "action_required", "approval", "reminder", "alert"],
    ),
    ("benefit_type", ["VR", "VT"]),
    ("benefit_vt_mode", ["fixed", "daily"]),
    (
        "benefit_payment_status",
        ["Pending", "Calculated", "Approved", "Paid", "Cancelled"],
    ),
    ("benefit_provider_status", ["Pending", "Processing", "Completed", "Failed"]),
    ("benefit_payment_method", ["Flash", "Bank Transfer", "Check", "Other"]),
    ("benefit_deduction_type", ["Absence", "Holiday", "Vacation", "Other"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

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
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code     VARCHAR(20)  NOT NULL UNIQUE,
            first_name        VARCHAR(100) NOT NULL,
            last_name         VARCHAR(100) NOT NULL,
            display_name      VARCHAR(255),
            email             VARCHAR(255) NOT NULL UNIQUE,
            department_id     UUID REFERENCES departments(id),
            job_title         VARCHAR(200),
            employment_type   employment_type DEFAULT 'CLT',
            employment_status employment_status DEFAULT 'active',
            date_of_joining   DATE NOT NULL,
            is_active         BOOLEAN DEFAULT TRUE,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_department ON employees(department_id)")
    op.execute("CREATE INDEX idx_employees_first_name ON employees(first_name)")

    # ── 3. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            token_hash   VARCHAR(512) NOT NULL,
            ip_address   INET,
            user_agent   TEXT,
            expires_at   TIMESTAMPTZ NOT NULL,
            is_revoked   BOOLEAN DEFAULT FALSE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_user_sessions_employee ON user_sessions(employee_id)")
    op.execute("CREATE INDEX idx_user_sessions_token    ON user_sessions(token_hash)")

    # ── 4. employee_benefit_configs ───────────────────────────────────────
    op.execute("""
        CREATE TABLE employee_benefit_configs (
            id                       UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id              UUID NOT NULL UNIQUE
                                         REFERENCES employees(id) ON DELETE CASCADE,
            vr_enabled               BOOLEAN DEFAULT TRUE,
            vr_daily_value           NUMERIC(12,2) DEFAULT 0
                                         CONSTRAINT ck_cfg_vr_daily_value CHECK (vr_daily_value >= 0),
            vr_business_days_default INTEGER DEFAULT 22,
            vr_include_saturdays     BOOLEAN DEFAULT FALSE,
            vt_enabled               BOOLEAN DEFAULT TRUE,
            vt_fixed_monthly_amount  NUMERIC(12,2) DEFAULT 0
                                         CONSTRAINT ck_cfg_vt_fixed_amount CHECK (vt_fixed_monthly_amount >= 0),
            vt_daily_value           NUMERIC(12,2) DEFAULT 0
                                         CONSTRAINT ck_cfg_vt_daily_value CHECK (vt_daily_value >= 0),
            mobility_enabled         BOOLEAN DEFAULT FALSE,
            mobility_monthly_value   NUMERIC(12,2) DEFAULT 0
                                         CONSTRAINT ck_cfg_mobility_value CHECK (mobility_monthly_value >= 0),
            updated_at               TIMESTAMPTZ,
            updated_by               UUID REFERENCES employees(id)
        )
    """)

    # ── 5. benefit_periods ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE benefit_periods (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id               UUID NOT NULL REFERENCES employees(id),
            month                     VARCHAR(7) NOT NULL,
            year                      INTEGER NOT NULL,

            vr_enabled                BOOLEAN DEFAULT TRUE,
            vr_daily_value            NUMERIC(12,2) DEFAULT 0,
            vr_business_days          INTEGER DEFAULT 22,
            vr_saturdays              INTEGER DEFAULT 0,
            vr_total_days             INTEGER DEFAULT 0,
            vr_total_amount           NUMERIC(12,2) DEFAULT 0,
            vr_final_amount           NUMERIC(12,2) DEFAULT 0,
            vr_schedule_file_url      VARCHAR(500),
            vr_schedule_uploaded_by   UUID REFERENCES employees(id),
            vr_schedule_uploaded_at   TIMESTAMPTZ,

            vt_enabled                BOOLEAN DEFAULT TRUE,
            vt_mode                   benefit_vt_mode DEFAULT 'fixed',
            vt_fixed_amount           NUMERIC(12,2) DEFAULT 0,
            vt_daily_value            NUMERIC(12,2) DEFAULT 0,
            vt_total_days             INTEGER DEFAULT 0,
            vt_total_amount           NUMERIC(12,2) DEFAULT 0,
            vt_final_amount           NUMERIC(12,2) DEFAULT 0,

            mobility_enabled          BOOLEAN DEFAULT FALSE,
            mobility_monthly_value    NUMERIC(12,2) DEFAULT 0,

            payment_status            benefit_payment_status NOT NULL DEFAULT 'Pending',
            payment_method            benefit_payment_method DEFAULT 'Flash',
            payment_date              TIMESTAMPTZ,

            disbursement_submitted    BOOLEAN NOT NULL DEFAULT FALSE,
            disbursement_submitted_at TIMESTAMPTZ,
            disbursement_submitted_by UUID REFERENCES employees(id),
            provider_reference        VARCHAR(100),
            provider_status           benefit_provider_status NOT NULL DEFAULT 'Pending',
            provider_response         JSONB,

            created_by                UUID REFERENCES employees(id),
            updated_by                UUID REFERENCES employees(id),
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            version                   INTEGER NOT NULL DEFAULT 1,

            CONSTRAINT uq_benefit_employee_month UNIQUE (employee_id, month),
            CONSTRAINT ck_benefit_vr_final CHECK (vr_final_amount >= 0),
            CONSTRAINT ck_benefit_vt_final CHECK (vt_final_amount >= 0)
        )
    """)
    op.execute("CREATE INDEX ix_benefit_periods_month ON benefit_periods(month)")
    op.execute(
        "CREATE INDEX ix_benefit_periods_payment_status ON benefit_periods(payment_status)"
    )
    op.execute(
        "CREATE INDEX ix_benefit_periods_provider_reference ON benefit_periods(provider_reference)"
    )

    # ── 6. benefit_deductions (append-only) ───────────────────────────────
    op.execute("""
        CREATE TABLE benefit_deductions (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            benefit_period_id UUID NOT NULL REFERENCES benefit_periods(id),
            benefit_type      benefit_type NOT NULL,
            deduction_date    DATE NOT NULL,
            amount            NUMERIC(12,2) NOT NULL
                                  CONSTRAINT ck_benefit_deduction_amount CHECK (amount > 0),
            reason            VARCHAR(500) NOT NULL,
            deduction_type    benefit_deduction_type NOT NULL DEFAULT 'Absence',
            recorded_by       UUID REFERENCES employees(id),
            recorded_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_benefit_deductions_period ON benefit_deductions(benefit_period_id)"
    )
    # Deductions are never edited or removed
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_benefit_deduction_change()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'benefit_deductions is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_benefit_deductions_append_only
            BEFORE UPDATE OR DELETE ON benefit_deductions
            FOR EACH ROW EXECUTE FUNCTION reject_benefit_deduction_change()
    """)

    # ── 7. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type         notification_type DEFAULT 'info',
            title        VARCHAR(200) NOT NULL,
            message      TEXT NOT NULL,
            action_url   VARCHAR(500),
            entity_type  VARCHAR(50),
            entity_id    UUID,
            is_read      BOOLEAN DEFAULT FALSE,
            read_at      TIMESTAMPTZ,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_unread ON notifications(recipient_id, is_read)"
    )

    # ── 8. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id    UUID REFERENCES employees(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            ip_address  INET,
            user_agent  TEXT,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action     ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "benefit_deductions",
        "benefit_periods",
        "employee_benefit_configs",
        "user_sessions",
        "employees",
        "departments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute("DROP FUNCTION IF EXISTS reject_benefit_deduction_change()")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
