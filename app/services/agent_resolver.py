from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StorageError
from app.models import Employee, HaloAgentMap
from app.services.halo_records import TimesheetEvent

logger = logging.getLogger("app.agent_resolver")


def _name_key(value: object) -> str:
    return str(value or "").strip().lower()


@dataclass(frozen=True, slots=True)
class EmployeeRef:
    id: int
    name: str


@dataclass(slots=True)
class AgentResolver:
    """Maps Halo agents to employee ids.

    Lookup order: persisted agent id mapping, caller overrides (by agent id or
    by agent name), then an exact case-insensitive employee name match.
    """

    mapped_by_agent_id: dict[str, int] = field(default_factory=dict)
    override_by_agent_id: dict[str, int] = field(default_factory=dict)
    override_by_agent_name: dict[str, int] = field(default_factory=dict)
    employees_by_name: dict[str, int] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        mappings: Iterable[tuple[int, str]],
        employees: Iterable[EmployeeRef],
        overrides: Mapping[str, object] | None = None,
    ) -> AgentResolver:
        employee_list = list(employees)
        employee_ids = {item.id for item in employee_list}
        employees_by_name: dict[str, int] = {}
        for employee in employee_list:
            key = _name_key(employee.name)
            if key:
                employees_by_name.setdefault(key, employee.id)

        mapped_by_agent_id: dict[str, int] = {}
        for employee_id, agent_id in mappings:
            agent_key = str(agent_id or "").strip()
            if agent_key and employee_id is not None:
                mapped_by_agent_id[agent_key] = int(employee_id)

        override_by_agent_id: dict[str, int] = {}
        override_by_agent_name: dict[str, int] = {}
        for raw_key, raw_value in (overrides or {}).items():
            agent_key = str(raw_key or "").strip()
            if not agent_key:
                continue
            employee_id = _resolve_override_value(raw_value, employee_ids, employees_by_name)
            if employee_id is None:
                continue
            if agent_key.isdigit():
                override_by_agent_id[agent_key] = employee_id
            else:
                override_by_agent_name[_name_key(agent_key)] = employee_id

        return cls(
            mapped_by_agent_id=mapped_by_agent_id,
            override_by_agent_id=override_by_agent_id,
            override_by_agent_name=override_by_agent_name,
            employees_by_name=employees_by_name,
        )

    def resolve(self, event: TimesheetEvent) -> int | None:
        agent_id = event.agent_id.strip()
        if agent_id:
            employee_id = self.mapped_by_agent_id.get(agent_id)
            if employee_id is not None:
                return employee_id
            employee_id = self.override_by_agent_id.get(agent_id)
            if employee_id is not None:
                return employee_id

        name_key = _name_key(event.agent_name)
        if not name_key:
            return None
        employee_id = self.override_by_agent_name.get(name_key)
        if employee_id is not None:
            return employee_id
        return self.employees_by_name.get(name_key)


def _resolve_override_value(
    value: object,
    employee_ids: set[int],
    employees_by_name: Mapping[str, int],
) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value in employee_ids else None

    raw = str(value).strip()
    if not raw:
        return None
    if raw.isdigit() and int(raw) in employee_ids:
        return int(raw)
    return employees_by_name.get(raw.lower())


def build_agent_resolver(db: Session, overrides: Mapping[str, object] | None = None) -> AgentResolver:
    try:
        mappings = [
            (row.employee_id, row.agent_id)
            for row in db.scalars(select(HaloAgentMap).order_by(HaloAgentMap.id)).all()
        ]
        employees = [
            EmployeeRef(id=row.id, name=row.name)
            for row in db.scalars(select(Employee).order_by(Employee.id)).all()
        ]
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not load agent mappings: {exc.__class__.__name__}") from exc

    resolver = AgentResolver.build(mappings=mappings, employees=employees, overrides=overrides)
    logger.info(
        "agent_resolver_built",
        extra={
            "persisted_mappings": len(resolver.mapped_by_agent_id),
            "override_ids": len(resolver.override_by_agent_id),
            "override_names": len(resolver.override_by_agent_name),
            "employees": len(employees),
        },
    )
    return resolver


def list_agent_mappings(db: Session) -> list[HaloAgentMap]:
    return list(db.scalars(select(HaloAgentMap).order_by(HaloAgentMap.employee_id)).all())


def upsert_agent_mapping(db: Session, *, employee_id: int, agent_id: str) -> HaloAgentMap:
    agent_key = str(agent_id or "").strip()
    if not agent_key:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="agent_id is required")
    if db.get(Employee, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    taken = db.scalar(
        select(HaloAgentMap).where(
            HaloAgentMap.agent_id == agent_key,
            HaloAgentMap.employee_id != employee_id,
        )
    )
    if taken is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Agent is already mapped to another employee",
        )

    mapping = db.scalar(select(HaloAgentMap).where(HaloAgentMap.employee_id == employee_id))
    if mapping is None:
        mapping = HaloAgentMap(employee_id=employee_id, agent_id=agent_key)
        db.add(mapping)
    else:
        mapping.agent_id = agent_key

    db.commit()
    db.refresh(mapping)
    return mapping
