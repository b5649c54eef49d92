"""
HTTP surface tests. Celery ``.delay`` is patched, so no broker is needed, and
the async DB dependency is replaced with a stub session.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ledgerjobs.core.database import get_db
from ledgerjobs.main import app
from ledgerjobs.routers import exports, inbox, recurring


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestRecurringRoutes:
    def test_enqueue_detection(self, client):
        user_id, account_id = uuid.uuid4(), uuid.uuid4()
        with patch.object(recurring.detect_recurring_transactions, "delay") as delay:
            delay.return_value = SimpleNamespace(id="task-1")
            resp = client.post(
                "/api/v1/recurring/detect",
                json={"user_id": str(user_id), "bank_account_id": str(account_id), "lookback_days": 60},
            )

        assert resp.status_code == 202
        assert resp.json() == {"task_id": "task-1", "status": "queued"}
        delay.assert_called_once_with({
            "user_id": str(user_id),
            "bank_account_id": str(account_id),
            "lookback_days": 60,
        })

    def test_enqueue_rejects_short_lookback(self, client):
        with patch.object(recurring.detect_recurring_transactions, "delay") as delay:
            resp = client.post(
                "/api/v1/recurring/detect",
                json={"user_id": str(uuid.uuid4()), "bank_account_id": str(uuid.uuid4()), "lookback_days": 7},
            )
        assert resp.status_code == 422
        delay.assert_not_called()

    def test_list_recurring(self, client):
        account_id = uuid.uuid4()
        row = SimpleNamespace(
            id=uuid.uuid4(),
            bank_account_id=account_id,
            title="Netflix",
            description=None,
            merchant_name="Netflix",
            amount=Decimal("15.99"),
            currency="USD",
            frequency="MONTHLY",
            start_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
            next_scheduled_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
            execution_count=3,
            confidence_score=0.7,
            source="detected",
            status="active",
            created_at=datetime(2024, 5, 2, tzinfo=timezone.utc),
        )
        session = MagicMock()
        session.execute = AsyncMock(return_value=MagicMock(**{"scalars.return_value.all.return_value": [row]}))

        async def override():
            yield session

        app.dependency_overrides[get_db] = override
        resp = client.get(f"/api/v1/recurring/{account_id}")

        assert resp.status_code == 200
        [body] = resp.json()
        assert body["title"] == "Netflix"
        assert body["frequency"] == "MONTHLY"
        assert body["source"] == "detected"


class TestExportRoutes:
    def test_enqueue_export(self, client):
        ids = [str(uuid.uuid4()), str(uuid.uuid4())]
        with patch.object(exports.process_export, "delay") as delay:
            delay.return_value = SimpleNamespace(id="export-1")
            resp = client.post("/api/v1/exports", json={"ids": ids, "locale": "en-US"})

        assert resp.status_code == 202
        assert resp.json()["task_id"] == "export-1"
        delay.assert_called_once_with({"ids": ids, "locale": "en-US"})

    def test_unknown_locale_rejected(self, client):
        resp = client.post("/api/v1/exports", json={"ids": [], "locale": "zz-ZZZZ"})
        assert resp.status_code == 422

    def test_status_success(self, client):
        result = MagicMock(state="SUCCESS", result={"rows": [], "attachments": []})
        result.successful.return_value = True
        with patch.object(exports, "AsyncResult", return_value=result):
            resp = client.get("/api/v1/exports/export-1")

        assert resp.json() == {
            "task_id": "export-1",
            "state": "SUCCESS",
            "result": {"rows": [], "attachments": []},
            "error": None,
        }

    def test_status_failure(self, client):
        result = MagicMock(state="FAILURE", result=RuntimeError("storage down"))
        result.successful.return_value = False
        result.failed.return_value = True
        with patch.object(exports, "AsyncResult", return_value=result):
            resp = client.get("/api/v1/exports/export-1")

        assert resp.json()["state"] == "FAILURE"
        assert resp.json()["error"] == "storage down"

    def test_status_pending(self, client):
        result = MagicMock(state="PENDING")
        result.successful.return_value = False
        result.failed.return_value = False
        with patch.object(exports, "AsyncResult", return_value=result):
            resp = client.get("/api/v1/exports/unknown")

        assert resp.json()["state"] == "PENDING"
        assert resp.json()["result"] is None


class TestInboxRoutes:
    def test_enqueue_document(self, client):
        inbox_id = uuid.uuid4()
        with patch.object(inbox.process_inbox_document, "delay") as delay:
            delay.return_value = SimpleNamespace(id="doc-1")
            resp = client.post(f"/api/v1/inbox/{inbox_id}/process")

        assert resp.status_code == 202
        delay.assert_called_once_with({"inbox_id": str(inbox_id)})


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
