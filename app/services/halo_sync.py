from __future__ import annotations

import enum
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.audit import log_sync_audit
from app.errors import ConfigurationError, FiscalYearNotFoundError, SourceFetchError, StorageError, SyncError
from app.models import AuditActorType, FiscalYear
from app.services.agent_resolver import build_agent_resolver
from app.services.classification import load_classification_rules
from app.services.fiscal import derive_fiscal_window
from app.services.halo_client import HaloClient, TimesheetSource
from app.services.halo_records import normalize_day, normalize_event
from app.services.month_entries import reconcile_month_entries
from app.services.time_aggregation import aggregate_time_events
from app.services.worked_hours import build_daily_worked_map

logger = logging.getLogger("app.halo_sync")


class SyncState(str, enum.Enum):
    IDLE = "IDLE"
    RESOLVING_WINDOW = "RESOLVING_WINDOW"
    FETCHING_SOURCE = "FETCHING_SOURCE"
    AGGREGATING = "AGGREGATING"
    RECONCILING = "RECONCILING"
    DONE = "DONE"
    FAILED = "FAILED"


_ALLOWED_TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.IDLE: frozenset({SyncState.RESOLVING_WINDOW, SyncState.FAILED}),
    SyncState.RESOLVING_WINDOW: frozenset({SyncState.FETCHING_SOURCE, SyncState.FAILED}),
    SyncState.FETCHING_SOURCE: frozenset({SyncState.AGGREGATING, SyncState.FAILED}),
    SyncState.AGGREGATING: frozenset({SyncState.RECONCILING, SyncState.FAILED}),
    SyncState.RECONCILING: frozenset({SyncState.DONE, SyncState.FAILED}),
    SyncState.DONE: frozenset(),
    SyncState.FAILED: frozenset(),
}


@dataclass(slots=True)
class SyncResult:
    ok: bool = False
    state: SyncState = SyncState.IDLE
    fiscal_year_id: int | None = None
    fiscal_year_label: str | None = None
    window_start: date | None = None
    window_end: date | None = None
    read_rows: int = 0
    matched_rows: int = 0
    unresolved_agent_rows: int = 0
    missing_date_rows: int = 0
    out_of_window_rows: int = 0
    imported_rows: int = 0
    imported_type_rows: int = 0
    message: str | None = None
    error: str | None = None
    error_code: str | None = None
    failed_stage: SyncState | None = None
    unresolved_agents: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": self.ok,
            "state": self.state.value,
            "fiscal_year_id": self.fiscal_year_id,
            "fiscal_year_label": self.fiscal_year_label,
            "from": self.window_start.isoformat() if self.window_start else None,
            "to": self.window_end.isoformat() if self.window_end else None,
            "read_rows": self.read_rows,
            "matched_rows": self.matched_rows,
            "unresolved_agent_rows": self.unresolved_agent_rows,
            "missing_date_rows": self.missing_date_rows,
            "out_of_window_rows": self.out_of_window_rows,
            "imported_rows": self.imported_rows,
            "imported_type_rows": self.imported_type_rows,
        }
        if self.message:
            payload["message"] = self.message
        if self.unresolved_agents:
            payload["unresolved_agents"] = list(self.unresolved_agents)
        if not self.ok:
            payload["error"] = self.error
            payload["error_code"] = self.error_code
            payload["failed_stage"] = self.failed_stage.value if self.failed_stage else None
        return payload


class SyncRun:
    """One sequential pass through the sync state machine."""

    def __init__(self, *, trigger: str):
        self.trigger = trigger
        self.result = SyncResult()
        self._started = time.perf_counter()

    @property
    def state(self) -> SyncState:
        return self.result.state

    def transition(self, target: SyncState) -> None:
        current = self.result.state
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"Invalid sync transition {current.value} -> {target.value}")
        self.result.state = target
        logger.info(
            "halo_sync_state",
            extra={
                "trigger": self.trigger,
                "from_state": current.value,
                "to_state": target.value,
                "fiscal_year_id": self.result.fiscal_year_id,
            },
        )

    def fail(self, exc: SyncError) -> None:
        stage = self.result.state
        self.transition(SyncState.FAILED)
        self.result.ok = False
        self.result.failed_stage = stage
        self.result.error = exc.message
        self.result.error_code = exc.code
        logger.error(
            "halo_sync_failed",
            extra={
                "trigger": self.trigger,
                "failed_stage": stage.value,
                "error_code": exc.code,
                "error": exc.message,
                "fiscal_year_id": self.result.fiscal_year_id,
            },
        )

    def finish(self) -> None:
        self.transition(SyncState.DONE)
        self.result.ok = True
        logger.info(
            "halo_sync_complete",
            extra={
                "trigger": self.trigger,
                "fiscal_year_id": self.result.fiscal_year_id,
                "fiscal_year_label": self.result.fiscal_year_label,
                "read_rows": self.result.read_rows,
                "matched_rows": self.result.matched_rows,
                "imported_rows": self.result.imported_rows,
                "imported_type_rows": self.result.imported_type_rows,
                "duration_ms": round((time.perf_counter() - self._started) * 1000, 2),
            },
        )


def _execute(
    run: SyncRun,
    db: Session,
    *,
    fiscal_year_id: int,
    source: TimesheetSource | None,
    agent_overrides: Mapping[str, object] | None,
    date_from: date | None,
    date_to: date | None,
) -> None:
    result = run.result
    result.fiscal_year_id = fiscal_year_id

    run.transition(SyncState.RESOLVING_WINDOW)
    fiscal_year = db.get(FiscalYear, fiscal_year_id)
    if fiscal_year is None:
        raise FiscalYearNotFoundError("Fiscal year not found")
    result.fiscal_year_label = fiscal_year.label
    fiscal_start, fiscal_end = derive_fiscal_window(fiscal_year)
    for bound in (date_from, date_to):
        if bound is not None and not fiscal_start <= bound <= fiscal_end:
            raise ConfigurationError(
                f"Sync window bound {bound.isoformat()} is outside fiscal year {fiscal_year.label} "
                f"({fiscal_start.isoformat()}..{fiscal_end.isoformat()})"
            )
    window_start = date_from or fiscal_start
    window_end = date_to or fiscal_end
    if window_start > window_end:
        raise ConfigurationError("Sync window start is after its end")
    result.window_start = window_start
    result.window_end = window_end

    rules = load_classification_rules(db)
    resolver = build_agent_resolver(db, agent_overrides)

    run.transition(SyncState.FETCHING_SOURCE)
    if source is None:
        source = HaloClient.from_settings()
    try:
        raw_events = source.fetch_timesheet_events(window_start, window_end)
        raw_days = source.fetch_timesheet_days(window_start, window_end)
    except SyncError:
        raise
    except Exception as exc:
        raise SourceFetchError(f"Halo fetch failed: {exc.__class__.__name__}: {exc}") from exc

    run.transition(SyncState.AGGREGATING)
    daily_worked = build_daily_worked_map(normalize_day(item) for item in raw_days)
    aggregation = aggregate_time_events(
        (normalize_event(item) for item in raw_events),
        daily_worked,
        resolver,
        rules,
        window=(window_start, window_end),
    )
    result.read_rows = aggregation.read_rows
    result.matched_rows = aggregation.matched_rows
    result.unresolved_agent_rows = aggregation.unresolved_agent_rows
    result.missing_date_rows = aggregation.missing_date_rows
    result.out_of_window_rows = aggregation.out_of_window_rows
    result.unresolved_agents = sorted(aggregation.unresolved_agents)

    run.transition(SyncState.RECONCILING)
    counts = reconcile_month_entries(db, aggregation, fiscal_year_id)
    result.imported_rows = counts.month_rows
    result.imported_type_rows = counts.type_rows
    if counts.month_rows == 0:
        result.message = "No matching rows to import"


def _audit_run(db: Session, run: SyncRun, *, actor_type: AuditActorType, actor_id: str, request_id: str | None) -> None:
    summary = run.result.to_dict()
    summary.pop("unresolved_agents", None)
    log_sync_audit(
        db,
        trigger=run.trigger,
        fiscal_year_id=run.result.fiscal_year_id,
        summary=summary,
        success=run.result.ok,
        actor_type=actor_type,
        actor_id=actor_id,
        request_id=request_id,
    )


def run_fiscal_year_sync(
    db: Session,
    fiscal_year_id: int,
    *,
    source: TimesheetSource | None = None,
    agent_overrides: Mapping[str, object] | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    trigger: str = "manual",
    actor_type: AuditActorType = AuditActorType.ADMIN,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> SyncResult:
    """Sync Halo time for one fiscal year and upsert its month entries.

    Fatal errors (configuration, fetch, storage, unknown fiscal year) end the
    run in ``FAILED`` and are returned in the result, never raised.
    """
    run = SyncRun(trigger=trigger)
    try:
        _execute(
            run,
            db,
            fiscal_year_id=fiscal_year_id,
            source=source,
            agent_overrides=agent_overrides,
            date_from=date_from,
            date_to=date_to,
        )
    except SyncError as exc:
        db.rollback()
        run.fail(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        run.fail(StorageError(f"Storage error: {exc.__class__.__name__}"))
    else:
        run.finish()

    _audit_run(db, run, actor_type=actor_type, actor_id=actor_id, request_id=request_id)
    return run.result


def find_latest_fiscal_year(db: Session) -> FiscalYear | None:
    """Fiscal year with the latest start date; label-derived starts count too."""
    latest: FiscalYear | None = None
    latest_key: tuple[date, int] | None = None
    for fiscal_year in db.scalars(select(FiscalYear)).all():
        try:
            start_date, _ = derive_fiscal_window(fiscal_year)
        except ConfigurationError:
            logger.warning(
                "fiscal_year_label_invalid",
                extra={"fiscal_year_id": fiscal_year.id, "label": fiscal_year.label},
            )
            continue
        key = (start_date, fiscal_year.id)
        if latest_key is None or key > latest_key:
            latest, latest_key = fiscal_year, key
    return latest


def run_latest_fiscal_year_sync(
    db: Session,
    *,
    source: TimesheetSource | None = None,
    request_id: str | None = None,
) -> SyncResult:
    try:
        fiscal_year = find_latest_fiscal_year(db)
    except SQLAlchemyError as exc:
        db.rollback()
        run = SyncRun(trigger="scheduled")
        run.fail(StorageError(f"Storage error: {exc.__class__.__name__}"))
        return run.result

    if fiscal_year is None:
        logger.warning("halo_sync_no_fiscal_years")
        return SyncResult(ok=True, state=SyncState.DONE, message="No fiscal years to sync")

    logger.info(
        "halo_sync_latest_fiscal_year",
        extra={"fiscal_year_id": fiscal_year.id, "fiscal_year_label": fiscal_year.label},
    )
    return run_fiscal_year_sync(
        db,
        fiscal_year.id,
        source=source,
        trigger="scheduled",
        actor_type=AuditActorType.CRON,
        actor_id="cron",
        request_id=request_id,
    )
