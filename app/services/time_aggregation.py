from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from app.services.classification import ClassificationRules, normalize_type_name
from app.services.fiscal import fiscal_month_index
from app.services.halo_records import TimesheetEvent

logger = logging.getLogger("app.time_aggregation")

ZERO = Decimal("0")
HUNDREDTH = Decimal("0.01")
MAX_UNRESOLVED_AGENT_SAMPLES = 50

MonthKey = tuple[int, int]
TypeKey = tuple[int, int, str]


class EmployeeResolver(Protocol):
    def resolve(self, event: TimesheetEvent) -> int | None: ...


def round_hours(value: Decimal) -> float:
    """Round half away from zero to two places; hours are never negative here."""
    return float(value.quantize(HUNDREDTH, rounding=ROUND_HALF_UP))


@dataclass(slots=True)
class MonthTotals:
    logged: Decimal = ZERO
    billed: Decimal = ZERO
    worked: Decimal = ZERO

    def rounded(self) -> dict[str, float]:
        return {
            "worked": round_hours(self.worked),
            "logged": round_hours(self.logged),
            "billed": round_hours(self.billed),
        }


@dataclass(slots=True)
class AggregationResult:
    month_totals: dict[MonthKey, MonthTotals] = field(default_factory=dict)
    type_totals: dict[TypeKey, Decimal] = field(default_factory=dict)
    read_rows: int = 0
    matched_rows: int = 0
    unresolved_agent_rows: int = 0
    missing_date_rows: int = 0
    out_of_window_rows: int = 0
    unresolved_agents: set[str] = field(default_factory=set)

    @property
    def skipped_rows(self) -> int:
        return self.read_rows - self.matched_rows

    def diagnostics(self) -> dict[str, object]:
        return {
            "read_rows": self.read_rows,
            "matched_rows": self.matched_rows,
            "unresolved_agent_rows": self.unresolved_agent_rows,
            "missing_date_rows": self.missing_date_rows,
            "out_of_window_rows": self.out_of_window_rows,
            "month_buckets": len(self.month_totals),
            "type_buckets": len(self.type_totals),
            "unresolved_agents": sorted(self.unresolved_agents),
        }


def _agent_label(event: TimesheetEvent) -> str:
    if event.agent_id and event.agent_name:
        return f"{event.agent_id}:{event.agent_name}"
    return event.agent_id or event.agent_name or "<unknown>"


def aggregate_time_events(
    events: Iterable[TimesheetEvent],
    daily_worked: Mapping[tuple[str, date], Decimal],
    resolver: EmployeeResolver,
    rules: ClassificationRules,
    window: tuple[date, date] | None = None,
) -> AggregationResult:
    """Fold timesheet events into per-employee fiscal-month totals.

    Billed hours need an allowlisted charge type, logged hours skip breaks,
    holidays and excluded charge types, and worked hours come from the daily
    summary map, counted once per agent and day no matter how many events
    that day has. Events whose agent or date cannot be resolved, or whose
    date falls outside ``window`` (inclusive), are skipped and counted; they
    never fail the run.
    """
    result = AggregationResult()
    worked_seen: set[tuple[str, date]] = set()
    window_start, window_end = window if window is not None else (None, None)

    for event in events:
        result.read_rows += 1

        employee_id = resolver.resolve(event)
        if employee_id is None:
            result.unresolved_agent_rows += 1
            if len(result.unresolved_agents) < MAX_UNRESOLVED_AGENT_SAMPLES:
                result.unresolved_agents.add(_agent_label(event))
            continue
        if event.day is None:
            result.missing_date_rows += 1
            continue
        if (window_start is not None and event.day < window_start) or (
            window_end is not None and event.day > window_end
        ):
            result.out_of_window_rows += 1
            continue

        result.matched_rows += 1
        month_index = fiscal_month_index(event.day)
        totals = result.month_totals.setdefault((employee_id, month_index), MonthTotals())

        hours = event.raw_hours if event.raw_hours > ZERO else ZERO
        charge_type = normalize_type_name(event.charge_type_name)

        if hours > ZERO and rules.is_billable(charge_type):
            totals.billed += hours
            if charge_type:
                type_key = (employee_id, month_index, charge_type)
                result.type_totals[type_key] = result.type_totals.get(type_key, ZERO) + hours

        if hours > ZERO and not rules.is_excluded_from_logged(event):
            totals.logged += hours

        agent_id = event.agent_id.strip()
        if agent_id:
            worked_key = (agent_id, event.day)
            if worked_key not in worked_seen:
                worked_seen.add(worked_key)
                totals.worked += daily_worked.get(worked_key, ZERO)

    logger.info("time_events_aggregated", extra=result.diagnostics())
    return result
