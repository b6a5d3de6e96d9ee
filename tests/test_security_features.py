from __future__ import annotations

import unittest
from unittest.mock import patch

from jose import jwt

from app.errors import ApiError
from app.security import (
    create_access_token,
    decode_token,
    ensure_login_attempt_allowed,
    hash_password,
    register_login_failure,
    register_login_success,
    verify_admin_credentials,
)
from app.settings import Settings


def _settings(**overrides) -> Settings:
    values = {
        "jwt_secret": "test-secret",
        "jwt_issuer": "halo-time-sync",
        "jwt_audience": "halo-time-sync-admin",
        "admin_user": "admin",
        "admin_pass_hash": "",
    }
    values.update(overrides)
    return Settings(**values)


class AccessTokenTests(unittest.TestCase):
    def test_token_round_trip(self) -> None:
        with patch("app.security.get_settings", return_value=_settings()):
            token, expires_in = create_access_token(username="admin")
            claims = decode_token(token)

        self.assertEqual(expires_in, 30 * 60)
        self.assertEqual(claims["username"], "admin")
        self.assertEqual(claims["role"], "admin")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        with patch("app.security.get_settings", return_value=_settings(jwt_secret="other")):
            token, _ = create_access_token(username="admin")
        with patch("app.security.get_settings", return_value=_settings()):
            with self.assertRaises(ApiError) as ctx:
                decode_token(token)

        self.assertEqual(ctx.exception.status_code, 401)

    def test_non_admin_role_is_forbidden(self) -> None:
        settings = _settings()
        token = jwt.encode(
            {
                "sub": "viewer",
                "role": "viewer",
                "typ": "access",
                "iss": settings.jwt_issuer,
                "aud": settings.jwt_audience,
                "iat": 1_700_000_000,
                "exp": 4_100_000_000,
            },
            settings.jwt_secret,
            algorithm="HS256",
        )

        with patch("app.security.get_settings", return_value=settings):
            with self.assertRaises(ApiError) as ctx:
                decode_token(token)

        self.assertEqual(ctx.exception.status_code, 403)


class AdminCredentialTests(unittest.TestCase):
    def test_credentials_checked_against_env_hash(self) -> None:
        password_hash = hash_password("correct horse")
        settings = _settings(admin_pass_hash=f'"{password_hash}"')

        with patch("app.security.get_settings", return_value=settings):
            self.assertTrue(verify_admin_credentials("admin", "correct horse"))
            self.assertFalse(verify_admin_credentials("admin", "wrong"))
            self.assertFalse(verify_admin_credentials("root", "correct horse"))

    def test_missing_hash_never_authenticates(self) -> None:
        with patch("app.security.get_settings", return_value=_settings()):
            self.assertFalse(verify_admin_credentials("admin", ""))

    def test_login_throttle_blocks_after_repeated_failures(self) -> None:
        ip = "198.51.100.23"
        register_login_success(ip)
        for _ in range(10):
            register_login_failure(ip)

        with self.assertRaises(ApiError) as ctx:
            ensure_login_attempt_allowed(ip)
        self.assertEqual(ctx.exception.status_code, 429)

        register_login_success(ip)
        ensure_login_attempt_allowed(ip)


if __name__ == "__main__":
    unittest.main()
