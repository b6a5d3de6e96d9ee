from __future__ import annotations

import hmac
import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from app.errors import ApiError
from app.settings import get_cron_secret, get_settings

logger = logging.getLogger("app.security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(ip: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[ip]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(ip, None)


def ensure_login_attempt_allowed(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        queue = _FAILED_ATTEMPTS.get(ip, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        _FAILED_ATTEMPTS[ip].append(now)


def register_login_success(ip: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(ip, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def _strip_quotes(value: str) -> str:
    # Quoted env values are a common deployment copy/paste issue.
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def verify_admin_credentials(username: str, password: str) -> bool:
    settings = get_settings()
    env_username = _strip_quotes((settings.admin_user or "").strip())
    env_pass_hash = _strip_quotes((settings.admin_pass_hash or "").strip())

    if not hmac.compare_digest(username, env_username):
        return False
    if not env_pass_hash:
        return False
    return verify_password(password, env_pass_hash)


def create_access_token(*, username: str) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": username,
        "username": username,
        "role": "admin",
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")
    if payload.get("role") != "admin":
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return payload


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    request.state.actor = "admin"
    request.state.actor_id = str(payload.get("username") or payload.get("sub") or "admin")
    return payload


def _presented_cron_secret(request: Request) -> str | None:
    auth_header = (request.headers.get("Authorization") or "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[len("bearer ") :].strip()
    header_secret = (request.headers.get("X-Cron-Secret") or "").strip()
    if header_secret:
        return header_secret
    query_secret = (request.query_params.get("secret") or "").strip()
    return query_secret or None


def require_cron_secret(request: Request) -> None:
    expected = get_cron_secret()
    request.state.actor = "cron"
    request.state.actor_id = "cron"
    if expected is None:
        # Dev mode: no secret configured means the trigger is open.
        logger.warning("cron_secret_not_configured", extra={"path": request.url.path})
        return

    presented = _presented_cron_secret(request)
    if presented is None or not hmac.compare_digest(presented, expected):
        logger.warning("cron_request_unauthorized", extra={"path": request.url.path})
        raise ApiError(status_code=401, code="UNAUTHORIZED", message="Unauthorized")
