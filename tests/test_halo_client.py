from __future__ import annotations

from datetime import date
import io
import json
import unittest
from unittest.mock import patch
from urllib import error as urllib_error

from app.errors import ConfigurationError, SourceFetchError
from app.services.halo_client import HaloClient
from app.settings import Settings


class _FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *_args) -> None:
        return None


def _client(**overrides) -> HaloClient:
    params = {
        "api_base": "https://halo.example.com/api/",
        "auth_base": "https://halo.example.com/auth",
        "client_id": "client",
        "client_secret": "secret",
        "tenant": "acme",
        "timeout_seconds": 5,
    }
    params.update(overrides)
    return HaloClient(**params)


class HaloClientConfigTests(unittest.TestCase):
    def test_missing_credentials_raise_configuration_error(self) -> None:
        settings = Settings(halo_api_base="https://halo.example.com/api", halo_client_id="", halo_client_secret=None)

        with self.assertRaises(ConfigurationError) as ctx:
            HaloClient.from_settings(settings)

        self.assertIn("HALO_CLIENT_ID", ctx.exception.message)
        self.assertIn("HALO_CLIENT_SECRET", ctx.exception.message)

    def test_auth_base_is_derived_from_api_base(self) -> None:
        settings = Settings(
            halo_api_base="https://halo.example.com/api/",
            halo_client_id="client",
            halo_client_secret="secret",
        )

        client = HaloClient.from_settings(settings)

        self.assertEqual(client.api_base, "https://halo.example.com/api")
        self.assertEqual(client.auth_base, "https://halo.example.com/auth")


class HaloClientFetchTests(unittest.TestCase):
    def test_fetch_events_requests_token_then_window(self) -> None:
        requests = []

        def fake_urlopen(request, timeout):
            requests.append(request)
            if request.full_url.endswith("/token"):
                return _FakeResponse({"access_token": "tok-1", "token_type": "Bearer", "expires_in": 3600})
            return _FakeResponse({"record_count": 1, "timesheets": [{"agent_id": 12}]})

        client = _client()
        with patch("app.services.halo_client.urllib_request.urlopen", side_effect=fake_urlopen):
            events = client.fetch_timesheet_events(date(2024, 9, 1), date(2025, 8, 31))
            client.fetch_timesheet_days(date(2024, 9, 1), date(2025, 8, 31))

        self.assertEqual(events, [{"agent_id": 12}])
        # Token is cached between calls.
        self.assertEqual(len(requests), 3)
        token_request, events_request, days_request = requests
        self.assertEqual(token_request.full_url, "https://halo.example.com/auth/token")
        self.assertIn(b"grant_type=client_credentials", token_request.data)
        self.assertEqual(
            events_request.full_url,
            "https://halo.example.com/api/TimesheetEvent?start_date=2024-09-01&end_date=2025-08-31",
        )
        self.assertEqual(events_request.get_header("Authorization"), "Bearer tok-1")
        self.assertEqual(events_request.get_header("X-halo-tenant"), "acme")
        self.assertTrue(days_request.full_url.startswith("https://halo.example.com/api/Timesheet?"))

    def test_http_error_becomes_source_fetch_error(self) -> None:
        def fake_urlopen(request, timeout):
            if request.full_url.endswith("/token"):
                return _FakeResponse({"access_token": "tok-1", "expires_in": 3600})
            raise urllib_error.HTTPError(
                request.full_url,
                503,
                "Service Unavailable",
                hdrs=None,
                fp=io.BytesIO(b"maintenance"),
            )

        with patch("app.services.halo_client.urllib_request.urlopen", side_effect=fake_urlopen):
            with self.assertRaises(SourceFetchError) as ctx:
                _client().fetch_timesheet_events(date(2024, 9, 1), date(2024, 9, 30))

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertIn("maintenance", ctx.exception.message)

    def test_token_response_without_access_token_fails(self) -> None:
        with patch(
            "app.services.halo_client.urllib_request.urlopen",
            return_value=_FakeResponse({"error": "invalid_client"}),
        ):
            with self.assertRaises(SourceFetchError):
                _client().fetch_timesheet_days(date(2024, 9, 1), date(2024, 9, 30))

    def test_fractional_token_lifetime_is_accepted(self) -> None:
        requests = []

        def fake_urlopen(request, timeout):
            requests.append(request)
            if request.full_url.endswith("/token"):
                return _FakeResponse({"access_token": "t", "expires_in": "3599.5"})
            return _FakeResponse([])

        client = _client()
        with patch("app.services.halo_client.urllib_request.urlopen", side_effect=fake_urlopen):
            client.fetch_timesheet_events(date(2024, 9, 1), date(2024, 9, 30))
            client.fetch_timesheet_days(date(2024, 9, 1), date(2024, 9, 30))

        self.assertEqual(len(requests), 3)
        self.assertEqual(requests[1].get_header("Authorization"), "Bearer t")

    def test_unparseable_token_lifetime_becomes_source_fetch_error(self) -> None:
        for expires_in in ("soon", "Infinity", [3600]):
            with self.subTest(expires_in=expires_in):
                with patch(
                    "app.services.halo_client.urllib_request.urlopen",
                    return_value=_FakeResponse({"access_token": "t", "expires_in": expires_in}),
                ):
                    with self.assertRaises(SourceFetchError) as ctx:
                        _client().fetch_timesheet_events(date(2024, 9, 1), date(2024, 9, 30))

                self.assertIn("expires_in", ctx.exception.message)

    def test_network_error_becomes_source_fetch_error(self) -> None:
        with patch(
            "app.services.halo_client.urllib_request.urlopen",
            side_effect=urllib_error.URLError("connection refused"),
        ):
            with self.assertRaises(SourceFetchError):
                _client().fetch_timesheet_events(date(2024, 9, 1), date(2024, 9, 30))


if __name__ == "__main__":
    unittest.main()
