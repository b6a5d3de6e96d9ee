from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StorageError
from app.models import MonthEntry, MonthEntryBilledType
from app.services.time_aggregation import AggregationResult, round_hours

logger = logging.getLogger("app.month_entries")

MONTH_ENTRY_CONFLICT_KEYS = ("employee_id", "fiscal_year_id", "month_index")
BILLED_TYPE_CONFLICT_KEYS = ("employee_id", "fiscal_year_id", "month_index", "charge_type_name")


@dataclass(frozen=True, slots=True)
class ReconcileCounts:
    month_rows: int
    type_rows: int
    inserted_month_rows: int
    updated_month_rows: int
    removed_type_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "month_rows": self.month_rows,
            "type_rows": self.type_rows,
            "inserted_month_rows": self.inserted_month_rows,
            "updated_month_rows": self.updated_month_rows,
            "removed_type_rows": self.removed_type_rows,
        }


def _insert_for(db: Session, model: type) -> Any:
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql_insert(model)
    if dialect_name == "sqlite":
        return sqlite_insert(model)
    raise StorageError(f"Upsert is not supported on dialect {dialect_name!r}")


def build_month_entry_rows(result: AggregationResult, fiscal_year_id: int) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for (employee_id, month_index), totals in sorted(result.month_totals.items()):
        rows.append(
            {
                "employee_id": employee_id,
                "fiscal_year_id": fiscal_year_id,
                "month_index": month_index,
                **totals.rounded(),
            }
        )
    return rows


def build_billed_type_rows(result: AggregationResult, fiscal_year_id: int) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for (employee_id, month_index, charge_type_name), hours in sorted(result.type_totals.items()):
        rows.append(
            {
                "employee_id": employee_id,
                "fiscal_year_id": fiscal_year_id,
                "month_index": month_index,
                "charge_type_name": charge_type_name.lower(),
                "hours": round_hours(hours),
            }
        )
    return rows


def existing_month_entry_ids(db: Session, fiscal_year_id: int) -> dict[tuple[int, int], int]:
    rows = db.execute(
        select(MonthEntry.id, MonthEntry.employee_id, MonthEntry.month_index).where(
            MonthEntry.fiscal_year_id == fiscal_year_id
        )
    ).all()
    return {(row.employee_id, row.month_index): row.id for row in rows}


def _delete_stale_billed_types(
    db: Session,
    fiscal_year_id: int,
    month_rows: list[dict[str, Any]],
    type_rows: list[dict[str, Any]],
) -> int:
    """Drop charge-type rows of recomputed buckets that no longer have billed hours."""
    buckets = {(row["employee_id"], row["month_index"]) for row in month_rows}
    current = {(row["employee_id"], row["month_index"], row["charge_type_name"]) for row in type_rows}
    existing = db.execute(
        select(
            MonthEntryBilledType.id,
            MonthEntryBilledType.employee_id,
            MonthEntryBilledType.month_index,
            MonthEntryBilledType.charge_type_name,
        ).where(MonthEntryBilledType.fiscal_year_id == fiscal_year_id)
    ).all()
    stale_ids = [
        row.id
        for row in existing
        if (row.employee_id, row.month_index) in buckets
        and (row.employee_id, row.month_index, row.charge_type_name) not in current
    ]
    if stale_ids:
        db.execute(delete(MonthEntryBilledType).where(MonthEntryBilledType.id.in_(stale_ids)))
    return len(stale_ids)


def _upsert(
    db: Session,
    model: type,
    rows: list[dict[str, Any]],
    conflict_keys: tuple[str, ...],
    value_columns: tuple[str, ...],
) -> None:
    if not rows:
        return
    stmt = _insert_for(db, model).values(rows)
    update_set = {column: stmt.excluded[column] for column in value_columns}
    update_set["updated_at"] = func.now()
    db.execute(stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=update_set))


def reconcile_month_entries(db: Session, result: AggregationResult, fiscal_year_id: int) -> ReconcileCounts:
    """Write aggregated buckets for one fiscal year.

    Rows are upserted on their natural keys so a row keeps its id across
    runs. Charge-type rows of a recomputed bucket that are absent from this
    run are deleted so the breakdown always sums to the bucket's billed
    hours. Everything happens in a single transaction.
    """
    month_rows = build_month_entry_rows(result, fiscal_year_id)
    type_rows = build_billed_type_rows(result, fiscal_year_id)
    if not month_rows and not type_rows:
        logger.info("month_entries_nothing_to_write", extra={"fiscal_year_id": fiscal_year_id})
        return ReconcileCounts(month_rows=0, type_rows=0, inserted_month_rows=0, updated_month_rows=0)

    try:
        existing = existing_month_entry_ids(db, fiscal_year_id)
        removed = _delete_stale_billed_types(db, fiscal_year_id, month_rows, type_rows)
        _upsert(
            db,
            MonthEntry,
            month_rows,
            MONTH_ENTRY_CONFLICT_KEYS,
            ("worked", "logged", "billed"),
        )
        _upsert(
            db,
            MonthEntryBilledType,
            type_rows,
            BILLED_TYPE_CONFLICT_KEYS,
            ("hours",),
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("month_entries_upsert_failed", extra={"fiscal_year_id": fiscal_year_id})
        raise StorageError(f"Month entry upsert failed: {exc.__class__.__name__}") from exc

    updated = sum(1 for row in month_rows if (row["employee_id"], row["month_index"]) in existing)
    counts = ReconcileCounts(
        month_rows=len(month_rows),
        type_rows=len(type_rows),
        inserted_month_rows=len(month_rows) - updated,
        updated_month_rows=updated,
        removed_type_rows=removed,
    )
    logger.info("month_entries_upserted", extra={"fiscal_year_id": fiscal_year_id, **counts.to_dict()})
    return counts
