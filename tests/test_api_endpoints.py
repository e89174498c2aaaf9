"""
Tests for API Endpoints

Tests the FastAPI endpoints for the Ledgerwise API.
"""

import pytest
from fastapi.testclient import TestClient

from main import app
from ledgerwise.core.config import LLMSettings, Settings
from ledgerwise.di.container import ServiceContainer, get_container, set_container
from ledgerwise.services.errors import PatternStoreWriteFailure
from ledgerwise.services.pattern_repository import InMemoryPatternRepository


class FailingRepository(InMemoryPatternRepository):
    def save_all(self, kind, records):
        raise PatternStoreWriteFailure(kind=f"{kind} patterns", detail="read-only filesystem")


@pytest.fixture
def client(tmp_path):
    previous = get_container()
    settings = Settings(state_db=str(tmp_path / "state.sqlite3"), llm=LLMSettings(), batch_call_spacing_seconds=0)
    set_container(ServiceContainer(settings=settings, repository=InMemoryPatternRepository()))
    yield TestClient(app)
    set_container(previous)


def _edit(category="supplies", **extra):
    before = {
        "id": "txn_1",
        "vendor": "Home Depot",
        "description": "Lumber and screws",
        "amount": 84.12,
        "transaction_type": "expense",
        "category": "repairs_maintenance",
        "payment_method": "Card",
    }
    before.update(extra)
    return {"before": before, "after": dict(before, category=category)}


class TestHealthEndpoint:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["fallback_mode"] is True
        assert data["llm"]["gemini_api_key"] is False


class TestCategorizeEndpoints:
    def test_categorize_fuel(self, client):
        response = client.post("/categorize", json={
            "transaction": {"description": "Fuel Purchase Pump #4", "vendor": "Shell", "amount": 52.10},
        })
        assert response.status_code == 200
        result = response.json()["categorization"]
        assert result["category"] == "car_and_truck"
        assert result["confidence"] == 0.9
        assert result["needs_review"] is False
        assert "patterns" not in response.json()

    def test_include_patterns(self, client):
        response = client.post("/categorize", json={
            "transaction": {"description": "Fuel Purchase Pump #4", "vendor": "Shell"},
            "include_patterns": True,
        })
        patterns = response.json()["patterns"]
        assert "fuel" in patterns["category_indicators"]
        assert patterns["source"] == "deterministic"

    def test_unknown_fields_rejected(self, client):
        response = client.post("/categorize", json={"transaction": {"description": "x", "colour": "red"}})
        assert response.status_code == 422

    def test_batch(self, client):
        response = client.post("/categorize/batch", json={
            "transactions": [
                {"description": "Check #1042 deposited", "vendor": "Jane Roe", "transaction_id": "a"},
                {"description": "Misc", "vendor": "Unknown", "transaction_id": "b"},
            ],
        })
        assert response.status_code == 200
        data = response.json()
        assert [r["transaction_id"] for r in data["results"]] == ["a", "b"]
        assert data["results"][0]["transaction_type"] == "income"
        assert data["needs_review"] == 1
        assert data["service_calls"] == 0

    def test_empty_batch_rejected(self, client):
        assert client.post("/categorize/batch", json={"transactions": []}).status_code == 422


class TestCorrectionEndpoints:
    def test_correction_changes_next_categorization(self, client):
        for n in range(3):
            response = client.post("/corrections", json=_edit(id=f"txn_{n}"))
            assert response.status_code == 200
            assert response.json()["recorded"] is True

        result = client.post("/categorize", json={
            "transaction": {"description": "diesel exhaust fluid", "vendor": "Home Depot"},
        }).json()["categorization"]
        assert result["category"] == "supplies"
        assert "vendor_exact_match" in result["applied_patterns"]

    def test_correction_payload_uses_wire_names(self, client):
        data = client.post("/corrections", json=_edit()).json()
        change = data["correction"]["changes"]["category"]
        assert change == {"from": "repairs_maintenance", "to": "supplies"}
        assert data["learned"]["vendor_pattern"]["outcome"] == "created"

    def test_unchanged_edit_not_recorded(self, client):
        payload = _edit(category="repairs_maintenance")
        data = client.post("/corrections", json=payload).json()
        assert data["recorded"] is False
        assert client.get("/corrections").json()["count"] == 0

    def test_mismatched_ids(self, client):
        payload = _edit()
        payload["after"]["id"] = "other"
        response = client.post("/corrections", json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_CORRECTION"

    def test_list_corrections(self, client):
        client.post("/corrections", json=_edit(id="first"))
        client.post("/corrections", json=_edit(id="second", category="meals"))
        data = client.get("/corrections", params={"limit": 1}).json()
        assert data["count"] == 1
        assert data["corrections"][0]["transaction_id"] == "second"

    def test_write_failure_is_reported(self, tmp_path):
        previous = get_container()
        settings = Settings(state_db=str(tmp_path / "unused.sqlite3"), llm=LLMSettings())
        set_container(ServiceContainer(settings=settings, repository=FailingRepository()))
        try:
            response = TestClient(app).post("/corrections", json=_edit())
        finally:
            set_container(previous)
        assert response.status_code == 500
        assert response.json()["error"] == "PATTERN_STORE_WRITE_FAILED"


class TestLearningEndpoints:
    def test_statistics_and_patterns(self, client):
        client.post("/corrections", json=_edit())
        stats = client.get("/learning/statistics").json()
        assert stats["patterns"]["vendor_patterns"] == 1
        assert stats["patterns"]["total_corrections"] == 1
        assert stats["cards"]["total_cards"] == 0

        vendors = client.get("/learning/patterns", params={"kind": "vendor"}).json()
        assert vendors["count"] == 1
        assert list(vendors["patterns"]) == ["vendor"]

    def test_rebuild(self, client):
        client.post("/corrections", json=_edit())
        data = client.post("/learning/rebuild").json()
        assert data["rebuilt"] is True
        assert data["statistics"]["vendor_patterns"] == 1

    def test_card_confirm_and_lookup(self, client):
        assert client.get("/learning/cards/4242").status_code == 404

        response = client.post("/learning/cards/4242", json={"payment_type": "debit", "vendor": "Shell"})
        assert response.status_code == 200
        assert response.json()["mapping"]["payment_type"] == "Debit"

        mapping = client.get("/learning/cards/4242").json()["mapping"]
        assert mapping["confidence"] == 0.8

    def test_card_validation(self, client):
        assert client.post("/learning/cards/12a4", json={"payment_type": "Debit"}).status_code == 400
        assert client.post("/learning/cards/4242", json={"payment_type": "Cash"}).status_code == 422

    def test_card_learned_from_payment_correction(self, client):
        payload = _edit(card_last_four="4242")
        payload["after"] = dict(payload["before"], payment_method="Credit")
        client.post("/corrections", json=payload)
        assert client.get("/learning/cards/4242").json()["mapping"]["payment_type"] == "Credit"
