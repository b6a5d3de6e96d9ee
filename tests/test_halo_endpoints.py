from __future__ import annotations

from datetime import date
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.errors import SourceFetchError
from app.main import app
from app.models import AuditLog, Employee, FiscalYear, MonthEntry
from app.routers.halo import get_timesheet_source
from app.security import require_admin


class _FakeSource:
    def __init__(self, events=None, days=None, error: Exception | None = None):
        self.events = events or []
        self.days = days or []
        self.error = error

    def fetch_timesheet_events(self, start_date: date, end_date: date):
        if self.error is not None:
            raise self.error
        return list(self.events)

    def fetch_timesheet_days(self, start_date: date, end_date: date):
        return list(self.days)


EVENTS = [
    {"agentId": "12", "agentName": "Anna Svensson", "day": "2024-09-15", "timeTaken": 4, "chargeTypeName": "Project"},
    {"agentId": "40", "agentName": "Bjorn B", "day": "2024-10-02", "timeTaken": 2, "chargeTypeName": "Remote Support"},
]
DAYS = [{"agentId": "12", "date": "2024-09-15", "workHours": 7.5}]


class HaloEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
        self.db.add(Employee(id=1, name="Anna Svensson"))
        self.db.add(Employee(id=2, name="Bjorn Berg"))
        self.db.add(FiscalYear(id=1, label="2024/2025"))
        self.db.commit()
        self.source = _FakeSource(events=EVENTS, days=DAYS)

        def override_get_db():
            yield self.db

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_timesheet_source] = lambda: self.source
        app.dependency_overrides[require_admin] = lambda: {"username": "admin", "role": "admin"}
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_scheduled_sync_requires_cron_secret(self) -> None:
        with patch("app.security.get_cron_secret", return_value="s3cret"):
            missing = self.client.get("/api/halopsa/sync-auto")
            wrong = self.client.get("/api/halopsa/sync-auto", headers={"Authorization": "Bearer nope"})

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json()["error"]["code"], "UNAUTHORIZED")
        self.assertEqual(wrong.status_code, 401)
        self.assertIsNone(self.db.scalar(select(MonthEntry)))

    def test_scheduled_sync_with_secret_runs_latest_fiscal_year(self) -> None:
        with patch("app.security.get_cron_secret", return_value="s3cret"):
            response = self.client.get(
                "/api/halopsa/sync-auto",
                headers={"Authorization": "Bearer s3cret"},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["fiscal_year_id"], 1)
        self.assertEqual(body["read_rows"], 2)
        self.assertEqual(body["imported_rows"], 1)
        self.assertEqual(body["unresolved_agent_rows"], 1)

        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "HALO_SYNC"))
        self.assertEqual(audit.actor_id, "cron")

    def test_scheduled_sync_accepts_query_secret(self) -> None:
        with patch("app.security.get_cron_secret", return_value="s3cret"):
            response = self.client.get("/api/halopsa/sync-auto", params={"secret": "s3cret"})

        self.assertEqual(response.status_code, 200)

    def test_scheduled_sync_failure_returns_500(self) -> None:
        self.source = _FakeSource(error=SourceFetchError("Halo fetch failed (502)", status_code=502))
        with patch("app.security.get_cron_secret", return_value=None):
            response = self.client.get("/api/halopsa/sync-auto")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["failed_stage"], "FETCHING_SOURCE")

    def test_manual_sync_for_unknown_fiscal_year_returns_404(self) -> None:
        response = self.client.post("/api/halopsa/sync-auto", json={"fiscalYearId": 42})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error_code"], "FISCAL_YEAR_NOT_FOUND")

    def test_manual_sync_fetch_failure_returns_400(self) -> None:
        self.source = _FakeSource(error=SourceFetchError("Halo token request failed (401)", status_code=401))

        response = self.client.post("/api/halopsa/sync-auto", json={"fiscalYearId": 1})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error_code"], "SOURCE_FETCH_FAILED")
        self.assertIsNone(self.db.scalar(select(MonthEntry)))

    def test_import_uses_agent_map_and_window(self) -> None:
        response = self.client.post(
            "/api/halopsa/import",
            json={
                "fiscalYearId": 1,
                "agentMap": {"40": 2},
                "options": {"from": "2024-09-01", "to": "2024-10-31"},
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["from"], "2024-09-01")
        self.assertEqual(body["to"], "2024-10-31")
        self.assertEqual(body["imported_rows"], 2)
        self.assertEqual(body["imported_type_rows"], 2)

    def test_import_rejects_inverted_window(self) -> None:
        response = self.client.post(
            "/api/halopsa/import",
            json={"fiscalYearId": 1, "options": {"from": "2024-10-31", "to": "2024-09-01"}},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_import_window_outside_fiscal_year_returns_400(self) -> None:
        response = self.client.post(
            "/api/halopsa/import",
            json={"fiscalYearId": 1, "options": {"from": "2023-09-01"}},
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error_code"], "CONFIGURATION_ERROR")
        self.assertEqual(body["failed_stage"], "RESOLVING_WINDOW")
        self.assertIsNone(self.db.scalar(select(MonthEntry)))

    def test_agent_map_upsert_and_list(self) -> None:
        created = self.client.post("/api/halopsa/agent-map", json={"employee_id": 1, "agent_id": 12})
        updated = self.client.post("/api/halopsa/agent-map", json={"employee_id": 1, "agent_id": "13"})
        conflict = self.client.post("/api/halopsa/agent-map", json={"employee_id": 2, "agent_id": "13"})
        unknown = self.client.post("/api/halopsa/agent-map", json={"employee_id": 99, "agent_id": "50"})
        listing = self.client.get("/api/halopsa/agent-map")

        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json(), {"employee_id": 1, "agent_id": "12"})
        self.assertEqual(updated.json()["agent_id"], "13")
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["error"]["code"], "CONFLICT")
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(listing.json(), {"ok": True, "mappings": [{"employee_id": 1, "agent_id": "13"}]})

    def test_admin_endpoints_require_token(self) -> None:
        app.dependency_overrides.pop(require_admin)

        response = self.client.get("/api/halopsa/agent-map")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")


class AdminConfigEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()

        def override_get_db():
            yield self.db

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[require_admin] = lambda: {"username": "admin", "role": "admin"}
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_classification_defaults_then_overrides(self) -> None:
        initial = self.client.get("/api/admin/classification/billable").json()
        self.assertTrue(initial["defaults_active"])
        self.assertIn("remote support", initial["effective"])

        added = self.client.post("/api/admin/classification/billable", json={"name": " Internal Meeting "})
        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()["names"], ["internal meeting"])
        self.assertEqual(added.json()["effective"], ["internal meeting"])
        self.assertFalse(added.json()["defaults_active"])

        removed = self.client.request(
            "DELETE",
            "/api/admin/classification/billable",
            json={"name": "internal meeting"},
        )
        self.assertEqual(removed.status_code, 200)
        self.assertTrue(removed.json()["defaults_active"])

        missing = self.client.request(
            "DELETE",
            "/api/admin/classification/billable",
            json={"name": "internal meeting"},
        )
        self.assertEqual(missing.status_code, 404)

    def test_unknown_classification_kind_is_rejected(self) -> None:
        response = self.client.get("/api/admin/classification/everything")

        self.assertEqual(response.status_code, 422)

    def test_fiscal_year_create_and_list(self) -> None:
        created = self.client.post("/api/admin/fiscal-years", json={"label": "2024/2025"})
        duplicate = self.client.post("/api/admin/fiscal-years", json={"label": "2024/2025"})
        invalid = self.client.post("/api/admin/fiscal-years", json={"label": "2024/2027"})
        listing = self.client.get("/api/admin/fiscal-years")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["start_date"], "2024-09-01")
        self.assertEqual(created.json()["end_date"], "2025-08-31")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(invalid.status_code, 422)
        self.assertEqual([item["label"] for item in listing.json()], ["2024/2025"])

    def test_login_rejects_bad_credentials(self) -> None:
        response = self.client.post(
            "/api/admin/auth/login",
            json={"username": "admin", "password": "wrong"},
            headers={"X-Forwarded-For": "203.0.113.77"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_CREDENTIALS")
        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "ADMIN_LOGIN_FAIL"))
        self.assertFalse(audit.success)


if __name__ == "__main__":
    unittest.main()
