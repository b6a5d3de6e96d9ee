"""Initial halo time sync schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-05 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    "CRON",
    name="audit_actor_type",
    create_type=False,
)

CLASSIFICATION_TABLES = (
    "halo_billable_charge_types",
    "halo_excluded_logged_types",
    "halo_excluded_break_types",
    "halo_excluded_holiday_types",
)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp_column("created_at"),
    )
    op.create_index("ix_employees_name", "employees", ["name"], unique=False)

    op.create_table(
        "fiscal_years",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("label", sa.String(length=16), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        _timestamp_column("created_at"),
        sa.UniqueConstraint("label", name="uq_fiscal_years_label"),
    )
    op.create_index("ix_fiscal_years_start_date", "fiscal_years", ["start_date"], unique=False)

    op.create_table(
        "halo_agent_map",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.String(length=64), nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", name="uq_halo_agent_map_employee_id"),
        sa.UniqueConstraint("agent_id", name="uq_halo_agent_map_agent_id"),
    )

    for table_name in CLASSIFICATION_TABLES:
        op.create_table(
            table_name,
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            _timestamp_column("created_at"),
            sa.UniqueConstraint("name", name=f"uq_{table_name}_name"),
        )

    op.create_table(
        "month_entries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("fiscal_year_id", sa.Integer(), nullable=False),
        sa.Column("month_index", sa.Integer(), nullable=False),
        sa.Column("worked", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("logged", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("billed", sa.Float(), nullable=False, server_default=sa.text("0")),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fiscal_year_id"], ["fiscal_years.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "fiscal_year_id",
            "month_index",
            name="uq_month_entries_employee_year_month",
        ),
        sa.CheckConstraint("month_index >= 0 AND month_index <= 11", name="ck_month_entries_month_index"),
    )
    op.create_index("ix_month_entries_employee_id", "month_entries", ["employee_id"], unique=False)
    op.create_index("ix_month_entries_fiscal_year_id", "month_entries", ["fiscal_year_id"], unique=False)

    op.create_table(
        "month_entries_billed_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("fiscal_year_id", sa.Integer(), nullable=False),
        sa.Column("month_index", sa.Integer(), nullable=False),
        sa.Column("charge_type_name", sa.String(length=255), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fiscal_year_id"], ["fiscal_years.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "fiscal_year_id",
            "month_index",
            "charge_type_name",
            name="uq_month_entries_billed_types_employee_year_month_type",
        ),
    )
    op.create_index(
        "ix_month_entries_billed_types_employee_id",
        "month_entries_billed_types",
        ["employee_id"],
        unique=False,
    )
    op.create_index(
        "ix_month_entries_billed_types_fiscal_year_id",
        "month_entries_billed_types",
        ["fiscal_year_id"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp_column("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_month_entries_billed_types_fiscal_year_id", table_name="month_entries_billed_types")
    op.drop_index("ix_month_entries_billed_types_employee_id", table_name="month_entries_billed_types")
    op.drop_table("month_entries_billed_types")
    op.drop_index("ix_month_entries_fiscal_year_id", table_name="month_entries")
    op.drop_index("ix_month_entries_employee_id", table_name="month_entries")
    op.drop_table("month_entries")
    for table_name in reversed(CLASSIFICATION_TABLES):
        op.drop_table(table_name)
    op.drop_table("halo_agent_map")
    op.drop_index("ix_fiscal_years_start_date", table_name="fiscal_years")
    op.drop_table("fiscal_years")
    op.drop_index("ix_employees_name", table_name="employees")
    op.drop_table("employees")
    audit_actor_type.drop(op.get_bind(), checkfirst=True)
