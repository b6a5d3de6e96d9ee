from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

EVENT_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "agent_id": ("agent_id", "agentId", "agentID"),
    "agent_name": ("agentName", "agent_name", "user_name", "agent", "username", "uname", "name"),
    "day": ("day", "date", "entryDate", "start_date", "end_date", "created_at"),
    "start": ("start_date", "startDate", "startdate"),
    "end": ("end_date", "endDate", "enddate"),
    "raw_hours": ("timeTakenHours", "rawTime", "raw_time", "timeTaken", "time_taken", "timetaken"),
    "charge_type_name": ("charge_type_name", "chargeTypeName"),
    "break_type": ("break_type", "breakType"),
    "holiday_id": ("holiday_id", "holidayId"),
}

DAY_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "agent_id": ("agent_id", "agentId", "agentID"),
    "date": ("date", "day"),
    "work_hours": ("work_hours", "workHours", "worked_hours", "workedHours"),
}

LIST_ENVELOPE_KEYS: tuple[str, ...] = ("timesheets", "events", "items", "data", "records")

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class TimesheetEvent:
    agent_id: str
    agent_name: str
    day: date | None
    start: datetime | None
    end: datetime | None
    raw_hours: Decimal
    charge_type_name: str
    break_type: Any
    holiday_id: Any


@dataclass(frozen=True, slots=True)
class TimesheetDay:
    agent_id: str
    day: date | None
    work_hours: Decimal


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def pick_field(record: Mapping[str, Any], aliases: Iterable[str], *, skip_blank: bool = False) -> Any:
    """Return the first alias present in ``record``; exact key first, then case-insensitive.

    With ``skip_blank`` an alias holding None or an empty string is passed over
    so the next alias gets a chance.
    """
    if not isinstance(record, Mapping):
        return None
    lowered: dict[str, str] | None = None
    for alias in aliases:
        if alias in record:
            value = record[alias]
        else:
            if lowered is None:
                lowered = {}
                for key in record.keys():
                    lowered.setdefault(str(key).lower(), key)
            original_key = lowered.get(alias.lower())
            if original_key is None:
                continue
            value = record[original_key]
        if skip_blank and _is_blank(value):
            continue
        return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_hours(value: Any) -> Decimal:
    """Hours as a non-negative Decimal; anything unusable is zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, float) and not math.isfinite(value):
        return ZERO
    try:
        hours = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not hours.is_finite() or hours <= 0:
        return ZERO
    return hours


def parse_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = _text(value)
    if len(raw) < 10:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    raw = _text(value)
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def positive_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        number = float(str(value).strip())
    except ValueError:
        return False
    return math.isfinite(number) and number > 0


def normalize_event(record: Mapping[str, Any]) -> TimesheetEvent:
    return TimesheetEvent(
        agent_id=_text(pick_field(record, EVENT_FIELD_ALIASES["agent_id"])),
        agent_name=_text(pick_field(record, EVENT_FIELD_ALIASES["agent_name"])),
        day=parse_day(pick_field(record, EVENT_FIELD_ALIASES["day"], skip_blank=True)),
        start=parse_timestamp(pick_field(record, EVENT_FIELD_ALIASES["start"])),
        end=parse_timestamp(pick_field(record, EVENT_FIELD_ALIASES["end"])),
        raw_hours=parse_hours(pick_field(record, EVENT_FIELD_ALIASES["raw_hours"])),
        charge_type_name=_text(pick_field(record, EVENT_FIELD_ALIASES["charge_type_name"])),
        break_type=pick_field(record, EVENT_FIELD_ALIASES["break_type"]),
        holiday_id=pick_field(record, EVENT_FIELD_ALIASES["holiday_id"]),
    )


def normalize_day(record: Mapping[str, Any]) -> TimesheetDay:
    return TimesheetDay(
        agent_id=_text(pick_field(record, DAY_FIELD_ALIASES["agent_id"])),
        day=parse_day(pick_field(record, DAY_FIELD_ALIASES["date"], skip_blank=True)),
        work_hours=parse_hours(pick_field(record, DAY_FIELD_ALIASES["work_hours"])),
    )


def unwrap_record_list(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in LIST_ENVELOPE_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []
