from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from campaign_backend.app.main import create_app
from campaign_backend.app.models import BudgetLedgerDocument, TrackedDriversDocument
from campaign_backend.app.persistence import DocumentPersistence
from campaign_backend.app.store import BUDGET_KEY, TRACKED_IDS_KEY, CampaignStateStore


def _sqlite_url(path: Path) -> str:
    return f"sqlite:///{path.as_posix()}"


def test_budget_and_tracking_persist_across_restart(app_env) -> None:
    first = TestClient(create_app())
    created = first.post(
        "/reactivation/budget", json={"expense": {"categoryId": "telegram", "amount": 75}}
    )
    assert created.status_code == 200
    first.post("/reactivation/tracked", json={"driverIds": ["o4"]})
    first.post("/call-center", json={"csvData": "901111111,salom"})

    restarted = TestClient(create_app())
    budget = restarted.get("/reactivation/budget").json()
    assert [e["amount"] for e in budget["expenses"]] == [75]
    assert restarted.get("/reactivation/tracked").json()["driverIds"] == ["o4"]
    assert restarted.get("/call-center").json()["stats"]["total"] == 1


def test_corrupt_document_falls_back_to_default(app_env) -> None:
    persistence = DocumentPersistence(_sqlite_url(app_env))
    persistence.put_raw(BUDGET_KEY, "{not json")
    persistence.put_raw(TRACKED_IDS_KEY, '{"driverIds": "o4"}')

    client = TestClient(create_app())
    budget = client.get("/reactivation/budget")
    assert budget.status_code == 200
    assert budget.json()["totalBudget"] == 3000
    assert budget.json()["expenses"] == []
    assert client.get("/reactivation/tracked").json()["driverIds"] == []


def test_store_round_trips_documents_without_persistence() -> None:
    store = CampaignStateStore()
    assert not store.exists(TRACKED_IDS_KEY)
    assert store.load(TRACKED_IDS_KEY, TrackedDriversDocument).driver_ids == []

    store.save(TRACKED_IDS_KEY, TrackedDriversDocument(driver_ids=["a"]))
    assert store.exists(TRACKED_IDS_KEY)
    updated = store.update(
        TRACKED_IDS_KEY,
        TrackedDriversDocument,
        lambda doc: doc.model_copy(update={"driver_ids": [*doc.driver_ids, "b"]}),
    )
    assert updated.driver_ids == ["a", "b"]
    assert store.load(TRACKED_IDS_KEY, TrackedDriversDocument).driver_ids == ["a", "b"]

    store.delete(TRACKED_IDS_KEY)
    assert not store.exists(TRACKED_IDS_KEY)


def test_store_uses_default_factory_for_missing_ledger() -> None:
    store = CampaignStateStore()
    ledger = store.load(
        BUDGET_KEY, BudgetLedgerDocument, lambda: BudgetLedgerDocument(total_budget=10)
    )
    assert ledger.total_budget == 10


def test_sqlite_url_creates_missing_parent_directories(tmp_path) -> None:
    db_path = tmp_path / "nested" / "campaign_state.sqlite3"
    persistence = DocumentPersistence(_sqlite_url(db_path))
    assert db_path.parent.exists()
    assert persistence.ping()
    assert persistence.get_raw("missing") is None
    persistence.put_raw("k", "{}")
    persistence.put_raw("k", '{"a": 1}')
    assert persistence.get_raw("k") == '{"a": 1}'
    persistence.delete("k")
    assert persistence.get_raw("k") is None
