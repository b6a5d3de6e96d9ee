from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import FiscalYearNotFoundError
from app.models import AuditActorType
from app.schemas import (
    AgentMappingListResponse,
    AgentMappingRead,
    AgentMappingUpsertRequest,
    HaloImportRequest,
    ManualSyncRequest,
)
from app.security import require_admin, require_cron_secret
from app.services.agent_resolver import list_agent_mappings, upsert_agent_mapping
from app.services.halo_client import TimesheetSource
from app.services.halo_sync import SyncResult, run_fiscal_year_sync, run_latest_fiscal_year_sync

router = APIRouter(prefix="/api/halopsa", tags=["halopsa"])


def get_timesheet_source() -> TimesheetSource | None:
    # None makes the sync build a HaloClient from settings inside the run,
    # so missing Halo configuration is reported as a failed sync result.
    return None


def _sync_response(request: Request, result: SyncResult, *, failure_status: int) -> JSONResponse:
    request.state.fiscal_year_id = result.fiscal_year_id
    if result.ok:
        status_code = 200
    elif result.error_code == FiscalYearNotFoundError.code:
        status_code = 404
    else:
        status_code = failure_status
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/sync-auto", dependencies=[Depends(require_cron_secret)])
def scheduled_sync(
    request: Request,
    db: Session = Depends(get_db),
    source: TimesheetSource | None = Depends(get_timesheet_source),
) -> JSONResponse:
    result = run_latest_fiscal_year_sync(
        db,
        source=source,
        request_id=getattr(request.state, "request_id", None),
    )
    return _sync_response(request, result, failure_status=500)


@router.post("/sync-auto")
def manual_sync(
    payload: ManualSyncRequest,
    request: Request,
    db: Session = Depends(get_db),
    source: TimesheetSource | None = Depends(get_timesheet_source),
    claims: dict[str, Any] = Depends(require_admin),
) -> JSONResponse:
    result = run_fiscal_year_sync(
        db,
        payload.fiscal_year_id,
        source=source,
        trigger="manual",
        actor_type=AuditActorType.ADMIN,
        actor_id=str(claims.get("username") or "admin"),
        request_id=getattr(request.state, "request_id", None),
    )
    return _sync_response(request, result, failure_status=400)


@router.post("/import")
def import_time(
    payload: HaloImportRequest,
    request: Request,
    db: Session = Depends(get_db),
    source: TimesheetSource | None = Depends(get_timesheet_source),
    claims: dict[str, Any] = Depends(require_admin),
) -> JSONResponse:
    options = payload.options
    result = run_fiscal_year_sync(
        db,
        payload.fiscal_year_id,
        source=source,
        agent_overrides=payload.agent_map,
        date_from=options.date_from if options else None,
        date_to=options.date_to if options else None,
        trigger="import",
        actor_type=AuditActorType.ADMIN,
        actor_id=str(claims.get("username") or "admin"),
        request_id=getattr(request.state, "request_id", None),
    )
    return _sync_response(request, result, failure_status=400)


@router.get(
    "/agent-map",
    response_model=AgentMappingListResponse,
    dependencies=[Depends(require_admin)],
)
def get_agent_map(db: Session = Depends(get_db)) -> AgentMappingListResponse:
    mappings = [AgentMappingRead.model_validate(item) for item in list_agent_mappings(db)]
    return AgentMappingListResponse(mappings=mappings)


@router.post(
    "/agent-map",
    response_model=AgentMappingRead,
    dependencies=[Depends(require_admin)],
)
def post_agent_map(payload: AgentMappingUpsertRequest, db: Session = Depends(get_db)) -> AgentMappingRead:
    mapping = upsert_agent_mapping(db, employee_id=payload.employee_id, agent_id=payload.agent_id)
    return AgentMappingRead.model_validate(mapping)
