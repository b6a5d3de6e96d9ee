from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class SyncError(Exception):
    """Fatal error for a whole sync run. Nothing is written after one is raised."""

    code = "SYNC_FAILED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(SyncError):
    code = "CONFIGURATION_ERROR"


class SourceFetchError(SyncError):
    code = "SOURCE_FETCH_FAILED"

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FiscalYearNotFoundError(SyncError):
    code = "FISCAL_YEAR_NOT_FOUND"


class StorageError(SyncError):
    code = "STORAGE_ERROR"


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
