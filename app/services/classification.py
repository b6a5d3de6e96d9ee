from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StorageError
from app.models import (
    HaloBillableChargeType,
    HaloExcludedBreakType,
    HaloExcludedHolidayType,
    HaloExcludedLoggedType,
)
from app.services.halo_records import TimesheetEvent, positive_number

logger = logging.getLogger("app.classification")

ClassificationKind = Literal["billable", "excluded-logged", "excluded-break", "excluded-holiday"]

DEFAULT_BILLABLE_CHARGE_TYPES: frozenset[str] = frozenset(
    {
        "remote support",
        "on-site support",
        "project",
        "documentation",
        "overtime remote support",
        "overtime on-site support",
        "overtime project",
        "int support (other department)",
        "travel time (zone 2)",
        "travel time (zone 1)",
        "overtime travel time",
        "included (agreement)",
        "finance deal",
        "travel only",
        "int pre-sale",
    }
)
DEFAULT_EXCLUDED_LOGGED_CHARGE_TYPES: frozenset[str] = frozenset({"holiday", "vacation", "break"})
DEFAULT_EXCLUDED_BREAK_TYPES: frozenset[str] = frozenset(
    {
        "taking a breather",
        "lunch break",
        "non-working hours",
    }
)
DEFAULT_EXCLUDED_HOLIDAY_TYPES: frozenset[str] = frozenset(
    {
        "vacation",
        "dentist appointment",
        "doctors appointment",
        "vab",
        "permission",
        "parental leave",
        "leave of absence",
        "withdraw time (stored compensation)",
    }
)

CLASSIFICATION_MODELS = {
    "billable": HaloBillableChargeType,
    "excluded-logged": HaloExcludedLoggedType,
    "excluded-break": HaloExcludedBreakType,
    "excluded-holiday": HaloExcludedHolidayType,
}


def normalize_type_name(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def _normalized_set(values: Iterable[object] | None, default: frozenset[str]) -> frozenset[str]:
    if values is None:
        return default
    normalized = frozenset(name for name in (normalize_type_name(item) for item in values) if name)
    return normalized or default


@dataclass(frozen=True, slots=True)
class ClassificationRules:
    billable_charge_types: frozenset[str] = DEFAULT_BILLABLE_CHARGE_TYPES
    excluded_logged_charge_types: frozenset[str] = DEFAULT_EXCLUDED_LOGGED_CHARGE_TYPES
    excluded_break_types: frozenset[str] = DEFAULT_EXCLUDED_BREAK_TYPES
    excluded_holiday_types: frozenset[str] = DEFAULT_EXCLUDED_HOLIDAY_TYPES

    @classmethod
    def from_sets(
        cls,
        *,
        billable: Iterable[object] | None = None,
        excluded_logged: Iterable[object] | None = None,
        excluded_break: Iterable[object] | None = None,
        excluded_holiday: Iterable[object] | None = None,
    ) -> ClassificationRules:
        """Build rules from raw names. Missing or empty sets fall back to the defaults."""
        return cls(
            billable_charge_types=_normalized_set(billable, DEFAULT_BILLABLE_CHARGE_TYPES),
            excluded_logged_charge_types=_normalized_set(excluded_logged, DEFAULT_EXCLUDED_LOGGED_CHARGE_TYPES),
            excluded_break_types=_normalized_set(excluded_break, DEFAULT_EXCLUDED_BREAK_TYPES),
            excluded_holiday_types=_normalized_set(excluded_holiday, DEFAULT_EXCLUDED_HOLIDAY_TYPES),
        )

    def is_billable(self, charge_type_name: object) -> bool:
        return normalize_type_name(charge_type_name) in self.billable_charge_types

    def is_excluded_from_logged(self, event: TimesheetEvent) -> bool:
        if normalize_type_name(event.charge_type_name) in self.excluded_logged_charge_types:
            return True

        break_label = normalize_type_name(event.break_type)
        if positive_number(event.break_type):
            return True
        if break_label and break_label in self.excluded_break_types:
            return True

        if positive_number(event.holiday_id):
            return True
        holiday_label = normalize_type_name(event.holiday_id)
        for label in (break_label, holiday_label):
            if label and label in self.excluded_holiday_types:
                return True
        return False


def _read_names(db: Session, kind: ClassificationKind) -> list[str]:
    model = CLASSIFICATION_MODELS[kind]
    return list(db.scalars(select(model.name).order_by(model.name)).all())


def load_classification_rules(db: Session) -> ClassificationRules:
    try:
        rules = ClassificationRules.from_sets(
            billable=_read_names(db, "billable"),
            excluded_logged=_read_names(db, "excluded-logged"),
            excluded_break=_read_names(db, "excluded-break"),
            excluded_holiday=_read_names(db, "excluded-holiday"),
        )
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not load classification config: {exc.__class__.__name__}") from exc

    logger.info(
        "classification_rules_loaded",
        extra={
            "billable_count": len(rules.billable_charge_types),
            "excluded_logged_count": len(rules.excluded_logged_charge_types),
            "excluded_break_count": len(rules.excluded_break_types),
            "excluded_holiday_count": len(rules.excluded_holiday_types),
        },
    )
    return rules


def list_classification_names(db: Session, kind: ClassificationKind) -> list[str]:
    return _read_names(db, kind)


def add_classification_name(db: Session, kind: ClassificationKind, name: str) -> str:
    normalized = normalize_type_name(name)
    if not normalized:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Name required")

    model = CLASSIFICATION_MODELS[kind]
    existing = db.scalar(select(model).where(model.name == normalized))
    if existing is not None:
        return normalized

    db.add(model(name=normalized))
    try:
        db.commit()
    except IntegrityError:
        # Concurrent insert of the same name.
        db.rollback()
    return normalized


def delete_classification_name(db: Session, kind: ClassificationKind, name: str) -> bool:
    normalized = normalize_type_name(name)
    if not normalized:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Name required")

    model = CLASSIFICATION_MODELS[kind]
    result = db.execute(delete(model).where(model.name == normalized))
    db.commit()
    return bool(result.rowcount)
