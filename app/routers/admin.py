from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError, ConfigurationError
from app.models import AuditActorType, FiscalYear
from app.schemas import (
    AdminAuthResponse,
    AdminLoginRequest,
    ClassificationListResponse,
    ClassificationNameRequest,
    FiscalYearCreate,
    FiscalYearRead,
)
from app.security import (
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_admin,
    verify_admin_credentials,
)
from app.services.classification import (
    ClassificationRules,
    add_classification_name,
    delete_classification_name,
    list_classification_names,
)
from app.services.fiscal import derive_fiscal_window, parse_fiscal_label

router = APIRouter(prefix="/api/admin", tags=["admin"])

ClassificationKindParam = Literal["billable", "excluded-logged", "excluded-break", "excluded-holiday"]

_EFFECTIVE_SET_BY_KIND = {
    "billable": "billable_charge_types",
    "excluded-logged": "excluded_logged_charge_types",
    "excluded-break": "excluded_break_types",
    "excluded-holiday": "excluded_holiday_types",
}
_FROM_SETS_ARG_BY_KIND = {
    "billable": "billable",
    "excluded-logged": "excluded_logged",
    "excluded-break": "excluded_break",
    "excluded-holiday": "excluded_holiday",
}


def _client_ip(request: Request) -> str | None:
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


def _actor_id(claims: dict[str, Any]) -> str:
    return str(claims.get("username") or claims.get("sub") or "admin")


@router.post("/auth/login", response_model=AdminAuthResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AdminAuthResponse:
    username = payload.username.strip()
    ip = _client_ip(request)
    request_id = getattr(request.state, "request_id", None)

    if ip:
        ensure_login_attempt_allowed(ip)

    if not verify_admin_credentials(username, payload.password):
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username,
            action="ADMIN_LOGIN_FAIL",
            success=False,
            details={"reason": "INVALID_CREDENTIALS", "ip": ip},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    if ip:
        register_login_success(ip)
    access_token, expires_in = create_access_token(username=username)
    request.state.actor = "admin"
    request.state.actor_id = username
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=username,
        action="ADMIN_LOGIN_SUCCESS",
        success=True,
        details={"ip": ip},
        request_id=request_id,
    )
    return AdminAuthResponse(access_token=access_token, expires_in=expires_in)


def _classification_listing(db: Session, kind: ClassificationKindParam) -> ClassificationListResponse:
    names = list_classification_names(db, kind)
    rules = ClassificationRules.from_sets(**{_FROM_SETS_ARG_BY_KIND[kind]: names})
    effective = getattr(rules, _EFFECTIVE_SET_BY_KIND[kind])
    return ClassificationListResponse(
        kind=kind,
        names=names,
        defaults_active=not names,
        effective=sorted(effective),
    )


@router.get(
    "/classification/{kind}",
    response_model=ClassificationListResponse,
    dependencies=[Depends(require_admin)],
)
def get_classification(kind: ClassificationKindParam, db: Session = Depends(get_db)) -> ClassificationListResponse:
    return _classification_listing(db, kind)


@router.post(
    "/classification/{kind}",
    response_model=ClassificationListResponse,
)
def post_classification(
    kind: ClassificationKindParam,
    payload: ClassificationNameRequest,
    request: Request,
    db: Session = Depends(get_db),
    claims: dict[str, Any] = Depends(require_admin),
) -> ClassificationListResponse:
    name = add_classification_name(db, kind, payload.name)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="CLASSIFICATION_NAME_ADDED",
        success=True,
        entity_type=kind,
        entity_id=name,
        request_id=getattr(request.state, "request_id", None),
    )
    return _classification_listing(db, kind)


@router.delete(
    "/classification/{kind}",
    response_model=ClassificationListResponse,
)
def delete_classification(
    kind: ClassificationKindParam,
    payload: ClassificationNameRequest,
    request: Request,
    db: Session = Depends(get_db),
    claims: dict[str, Any] = Depends(require_admin),
) -> ClassificationListResponse:
    deleted = delete_classification_name(db, kind, payload.name)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Name not found")
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="CLASSIFICATION_NAME_DELETED",
        success=True,
        entity_type=kind,
        entity_id=payload.name.strip().lower(),
        request_id=getattr(request.state, "request_id", None),
    )
    return _classification_listing(db, kind)


def _fiscal_year_read(fiscal_year: FiscalYear) -> FiscalYearRead:
    start_date, end_date = derive_fiscal_window(fiscal_year)
    return FiscalYearRead(
        id=fiscal_year.id,
        label=fiscal_year.label,
        start_date=start_date,
        end_date=end_date,
        created_at=fiscal_year.created_at,
    )


@router.get(
    "/fiscal-years",
    response_model=list[FiscalYearRead],
    dependencies=[Depends(require_admin)],
)
def list_fiscal_years(db: Session = Depends(get_db)) -> list[FiscalYearRead]:
    rows = db.scalars(select(FiscalYear).order_by(FiscalYear.label.desc())).all()
    return [_fiscal_year_read(item) for item in rows]


@router.post(
    "/fiscal-years",
    response_model=FiscalYearRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_fiscal_year(payload: FiscalYearCreate, db: Session = Depends(get_db)) -> FiscalYearRead:
    try:
        parse_fiscal_label(payload.label)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message) from exc

    fiscal_year = FiscalYear(label=payload.label, start_date=payload.start_date, end_date=payload.end_date)
    db.add(fiscal_year)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Fiscal year already exists") from exc
    db.refresh(fiscal_year)
    return _fiscal_year_read(fiscal_year)
