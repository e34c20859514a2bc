import pytest
from fastapi.testclient import TestClient

from medjournal.api.main import app, get_store
from medjournal.audit.hash_utils import compute_content_hash
from medjournal.classifier.gateway import ClassifierGateway
from medjournal.errors import (
    ConfigurationError,
    EmptyResponse,
    InvalidInput,
    StoreUnavailable,
    UnparsableResponse,
    UpstreamError,
)

client = TestClient(app)


# =========================================================
# Fixtures
# =========================================================
@pytest.fixture
def classifier(mocker, headache_classification):
    fake = mocker.Mock()
    fake.classify.return_value = headache_classification
    mocker.patch("medjournal.api.main.get_classifier", return_value=fake)
    return fake


@pytest.fixture
def store(sql_store):
    app.dependency_overrides[get_store] = lambda: sql_store
    yield sql_store
    app.dependency_overrides.pop(get_store, None)


@pytest.fixture
def stored_entry(store, make_draft, owner, headache_classification):
    draft = make_draft()
    content_hash = compute_content_hash(
        draft.text, headache_classification, draft.submitted_at, owner
    )
    return store.append(make_draft(content_hash=content_hash))


# =========================================================
# /health
# =========================================================
def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "online"


# =========================================================
# /analyze-entry
# =========================================================
def test_analyze_entry_returns_analysis(classifier):
    response = client.post("/analyze-entry", json={"text": "Severe headache and nausea"})

    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["symptoms"] == ["headache", "nausea"]
    assert analysis["severity"] == "high"
    assert analysis["confidence"] == 0.9


def test_analyze_entry_missing_text_is_400(classifier):
    classifier.classify.side_effect = InvalidInput("Invalid request: 'text' is required")

    response = client.post("/analyze-entry", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request: 'text' is required"}


@pytest.mark.parametrize(
    "error, status",
    [
        (UpstreamError("Gemini API failed", status=503, body="overloaded"), 502),
        (EmptyResponse("No content"), 502),
        (UnparsableResponse("bad", raw="prose"), 500),
        (ConfigurationError("Missing GOOGLE_AI_API_KEY secret"), 500),
    ],
)
def test_analyze_entry_error_statuses(classifier, error, status):
    classifier.classify.side_effect = error

    response = client.post("/analyze-entry", json={"text": "Headache"})

    assert response.status_code == status
    assert "error" in response.json()


def test_upstream_body_is_passed_as_details(classifier):
    classifier.classify.side_effect = UpstreamError("failed", status=429, body="quota exceeded")

    response = client.post("/analyze-entry", json={"text": "Headache"})

    assert response.json() == {"error": "Classifier request failed", "details": "quota exceeded"}


# =========================================================
# /entries
# =========================================================
def test_list_entries_for_owner(stored_entry, owner):
    response = client.get("/entries", params={"wallet_address": owner})

    assert response.status_code == 200
    [record] = response.json()
    assert record["id"] == stored_entry.id
    assert record["data_hash"] == stored_entry.content_hash
    assert record["tx_hash"] == stored_entry.external_reference


def test_list_entries_requires_owner(store):
    response = client.get("/entries")
    assert response.status_code == 422


def test_list_entries_store_down(mocker):
    failing = mocker.Mock()
    failing.list_by_owner.side_effect = StoreUnavailable("db down")
    app.dependency_overrides[get_store] = lambda: failing
    try:
        response = client.get("/entries", params={"wallet_address": "0xabc"})
    finally:
        app.dependency_overrides.pop(get_store, None)

    assert response.status_code == 503


def test_export_entries_as_text(stored_entry, owner):
    response = client.get("/entries/export", params={"wallet_address": owner})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "attachment; filename=\"health-journal-" in response.headers["content-disposition"]
    assert "HEALTH JOURNAL ENTRY #1" in response.text
    assert stored_entry.text in response.text


def test_verification_endpoint(stored_entry):
    response = client.get(f"/entries/{stored_entry.id}/verification")

    assert response.status_code == 200
    body = response.json()
    assert body["matches"] is True
    assert body["verifiable"] is True
    assert body["stored_hash"] == stored_entry.content_hash


def test_verification_unknown_entry(store):
    response = client.get("/entries/missing-id/verification")
    assert response.status_code == 404


# =========================================================
# /analyze-entry request bodies
# =========================================================
@pytest.fixture
def provider(mocker):
    fake = mocker.Mock()
    fake.name = "fake"
    mocker.patch(
        "medjournal.api.main.get_classifier", return_value=ClassifierGateway(fake)
    )
    return fake


@pytest.mark.parametrize(
    "body, headers",
    [
        ('{"text": 123}', {"Content-Type": "application/json"}),
        ("not json", {"Content-Type": "application/json"}),
        ('["headache"]', {"Content-Type": "application/json"}),
        ("", {}),
    ],
)
def test_malformed_body_is_400_without_classifier_call(provider, body, headers):
    response = client.post("/analyze-entry", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request: 'text' is required"}
    provider.complete.assert_not_called()
