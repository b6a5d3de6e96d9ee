from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "name"},
    "fiscal_years": {"id", "label", "start_date", "end_date"},
    "halo_agent_map": {"employee_id", "agent_id"},
    "month_entries": {"id", "employee_id", "fiscal_year_id", "month_index", "worked", "logged", "billed"},
    "month_entries_billed_types": {"id", "employee_id", "fiscal_year_id", "month_index", "charge_type_name", "hours"},
    "alembic_version": {"version_num"},
}

# Upserts rely on these natural-key constraints.
REQUIRED_UNIQUE_KEYS: dict[str, set[str]] = {
    "month_entries": {"employee_id", "fiscal_year_id", "month_index"},
    "month_entries_billed_types": {"employee_id", "fiscal_year_id", "month_index", "charge_type_name"},
}

OPTIONAL_TABLES: tuple[str, ...] = (
    "halo_billable_charge_types",
    "halo_excluded_logged_types",
    "halo_excluded_break_types",
    "halo_excluded_holiday_types",
)


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, key_columns in REQUIRED_UNIQUE_KEYS.items():
        try:
            constraints = inspector.get_unique_constraints(table_name) or []
            indexes = [item for item in inspector.get_indexes(table_name) or [] if item.get("unique")]
        except Exception as exc:  # pragma: no cover
            issues.append(f"CONSTRAINTS_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        unique_column_sets = [set(item.get("column_names") or []) for item in [*constraints, *indexes]]
        if key_columns not in unique_column_sets:
            issues.append(f"MISSING_UNIQUE_KEY:{table_name}:{','.join(sorted(key_columns))}")

    for table_name in OPTIONAL_TABLES:
        try:
            inspector.get_columns(table_name)
        except Exception as exc:
            warnings.append(f"OPTIONAL_TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
