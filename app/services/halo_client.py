from __future__ import annotations

import json
import logging
import time
from datetime import date
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from app.errors import ConfigurationError, SourceFetchError
from app.services.halo_records import unwrap_record_list
from app.settings import Settings, get_halo_api_base, get_halo_auth_base, get_settings

logger = logging.getLogger("app.halo_client")

TIMESHEET_EVENT_ENTITY = "TimesheetEvent"
TIMESHEET_ENTITY = "Timesheet"
_TOKEN_EXPIRY_MARGIN_SECONDS = 30


class TimesheetSource(Protocol):
    def fetch_timesheet_events(self, start_date: date, end_date: date) -> list[dict[str, Any]]: ...

    def fetch_timesheet_days(self, start_date: date, end_date: date) -> list[dict[str, Any]]: ...


class HaloClient:
    """Minimal HaloPSA REST client using the client-credentials grant."""

    def __init__(
        self,
        *,
        api_base: str,
        auth_base: str,
        client_id: str,
        client_secret: str,
        scope: str = "all",
        tenant: str | None = None,
        timeout_seconds: int = 60,
    ):
        self.api_base = api_base.rstrip("/")
        self.auth_base = auth_base.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope or "all"
        self.tenant = (tenant or "").strip() or None
        self.timeout_seconds = max(1, int(timeout_seconds))
        self._token: str | None = None
        self._token_type = "Bearer"
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> HaloClient:
        settings = settings or get_settings()
        api_base = get_halo_api_base(settings)
        auth_base = get_halo_auth_base(settings)
        client_id = (settings.halo_client_id or "").strip()
        client_secret = (settings.halo_client_secret or "").strip()

        missing = [
            name
            for name, value in (
                ("HALO_API_BASE", api_base),
                ("HALO_AUTH_BASE", auth_base),
                ("HALO_CLIENT_ID", client_id),
                ("HALO_CLIENT_SECRET", client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing Halo configuration: {', '.join(missing)}")

        return cls(
            api_base=api_base or "",
            auth_base=auth_base or "",
            client_id=client_id,
            client_secret=client_secret,
            scope=settings.halo_scope,
            tenant=settings.halo_tenant,
            timeout_seconds=settings.halo_timeout_seconds,
        )

    def _open_json(self, request: urllib_request.Request, *, what: str) -> Any:
        try:
            with urllib_request.urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read().decode("utf-8", errors="replace")
        except urllib_error.HTTPError as exc:
            error_body = exc.read(512).decode("utf-8", errors="ignore")
            raise SourceFetchError(
                f"Halo {what} failed ({exc.code}): {error_body or exc.reason}",
                status_code=int(exc.code),
            ) from exc
        except (urllib_error.URLError, TimeoutError, OSError) as exc:
            raise SourceFetchError(f"Halo {what} failed: {exc}") from exc

        try:
            return json.loads(body) if body else None
        except ValueError as exc:
            raise SourceFetchError(f"Halo {what} returned invalid JSON") from exc

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        body = urllib_parse.urlencode(
            {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": self.scope,
            }
        ).encode("utf-8")
        request = urllib_request.Request(
            url=f"{self.auth_base}/token",
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )
        payload = self._open_json(request, what="token request")
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise SourceFetchError("Halo token response did not contain an access token")

        self._token = str(payload["access_token"])
        self._token_type = str(payload.get("token_type") or "Bearer")
        try:
            expires_in = int(float(payload.get("expires_in") or 0))
        except (TypeError, ValueError, OverflowError) as exc:
            raise SourceFetchError(
                f"Halo token response has an invalid expires_in: {payload.get('expires_in')!r}"
            ) from exc
        self._token_expires_at = time.monotonic() + max(0, expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS)
        return self._token

    def get(self, path: str, query: dict[str, Any] | None = None) -> Any:
        token = self._access_token()
        params = {key: str(value) for key, value in (query or {}).items() if value is not None}
        url = f"{self.api_base}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urllib_parse.urlencode(params)}"

        request = urllib_request.Request(url=url, method="GET")
        request.add_header("Authorization", f"{self._token_type} {token}")
        request.add_header("Accept", "application/json")
        if self.tenant:
            request.add_header("X-Halo-Tenant", self.tenant)

        started = time.perf_counter()
        payload = self._open_json(request, what=f"fetch {path}")
        logger.info(
            "halo_fetch_complete",
            extra={
                "path": path,
                "query": params,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return payload

    def _fetch_window(self, entity: str, start_date: date, end_date: date) -> list[dict[str, Any]]:
        payload = self.get(
            entity,
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        if payload is not None and not isinstance(payload, (list, dict)):
            raise SourceFetchError(f"Unexpected response shape from Halo {entity}")
        return unwrap_record_list(payload)

    def fetch_timesheet_events(self, start_date: date, end_date: date) -> list[dict[str, Any]]:
        return self._fetch_window(TIMESHEET_EVENT_ENTITY, start_date, end_date)

    def fetch_timesheet_days(self, start_date: date, end_date: date) -> list[dict[str, Any]]:
        return self._fetch_window(TIMESHEET_ENTITY, start_date, end_date)
