from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol

from app.errors import ConfigurationError

FISCAL_YEAR_START_MONTH = 9
FISCAL_MONTH_LABELS: tuple[str, ...] = (
    "Sep",
    "Oct",
    "Nov",
    "Dec",
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
)


class FiscalYearLike(Protocol):
    label: str
    start_date: date | None
    end_date: date | None


@dataclass(frozen=True, slots=True)
class FiscalYearParts:
    start_year: int
    end_year: int


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def fiscal_month_index(value: date | datetime | str) -> int:
    """Index of the month inside a September-start fiscal year (Sep=0 .. Aug=11)."""
    month0 = _as_date(value).month - 1
    return ((month0 + 12) - (FISCAL_YEAR_START_MONTH - 1)) % 12


def parse_fiscal_label(label: str) -> FiscalYearParts:
    raw = (label or "").strip()
    try:
        start_raw, end_raw = raw.split("/")
        parts = FiscalYearParts(start_year=int(start_raw), end_year=int(end_raw))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid fiscal year label: {label!r}. Use YYYY/YYYY.") from exc
    if parts.end_year != parts.start_year + 1:
        raise ConfigurationError(f"Invalid fiscal year label: {label!r}. Years must be consecutive.")
    return parts


def derive_fiscal_window(fiscal_year: FiscalYearLike) -> tuple[date, date]:
    if fiscal_year.start_date is not None and fiscal_year.end_date is not None:
        return fiscal_year.start_date, fiscal_year.end_date

    parts = parse_fiscal_label(fiscal_year.label)
    return date(parts.start_year, FISCAL_YEAR_START_MONTH, 1), date(parts.end_year, 8, 31)


def current_fiscal_year_parts(ref: datetime | None = None) -> FiscalYearParts:
    now = ref or datetime.now(timezone.utc)
    if now.month >= FISCAL_YEAR_START_MONTH:
        return FiscalYearParts(start_year=now.year, end_year=now.year + 1)
    return FiscalYearParts(start_year=now.year - 1, end_year=now.year)


def fiscal_label(parts: FiscalYearParts) -> str:
    return f"{parts.start_year}/{parts.end_year}"


def fiscal_month_labels() -> list[dict[str, int | str]]:
    return [{"label": label, "index": index} for index, label in enumerate(FISCAL_MONTH_LABELS)]
