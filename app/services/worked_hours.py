from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from app.services.halo_records import TimesheetDay

DailyWorkedMap = dict[tuple[str, date], Decimal]


def build_daily_worked_map(days: Iterable[TimesheetDay]) -> DailyWorkedMap:
    # Several summary rows for one agent/day are summed (split shifts).
    worked: defaultdict[tuple[str, date], Decimal] = defaultdict(Decimal)
    for item in days:
        agent_id = item.agent_id.strip()
        if not agent_id or item.day is None:
            continue
        worked[(agent_id, item.day)] += item.work_hours
    return dict(worked)
