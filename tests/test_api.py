"""
Tests for the Flask API using the test client.
"""

import pytest

from medshare.api.app import create_app
from medshare.api.auth import generate_token, verify_token


# ── Helpers ──────────────────────────────────────────────────────────

def auth(subject_id):
    return {"Authorization": f"Bearer {generate_token(subject_id)}"}


@pytest.fixture
def client(engine, directory, clock):
    app = create_app(engine=engine, clock=clock)
    app.config["TESTING"] = True
    return app.test_client()


def issue(client, subject="P1", **body):
    return client.post("/api/grants", json=body, headers=auth(subject))


# ── Tests: auth ──────────────────────────────────────────────────────

def test_verify_token_round_trip():
    assert verify_token(generate_token("P1"))["sub"] == "P1"
    assert verify_token("garbage") is None
    assert verify_token(generate_token("P1", expiry_hours=-1)) is None


def test_missing_or_bad_authorization(client):
    assert client.post("/api/grants", json={}).status_code == 401
    resp = client.post("/api/grants", json={}, headers={"Authorization": "Token abc"})
    assert resp.status_code == 401
    resp = client.post("/api/grants", json={}, headers={"Authorization": "Bearer nope"})
    assert resp.get_json()["error"] == "Invalid or expired token"


# ── Tests: issue / list / revoke ─────────────────────────────────────

def test_issue_then_reuse(client):
    first = issue(client, ttl_hours=12, permissions={"view_medications": True})
    assert first.status_code == 201
    data = first.get_json()
    assert len(data["token"]) == 8
    assert data["reused"] is False
    assert data["permissions"]["view_medications"] is True
    assert data["permissions"]["view_diagnosis"] is False

    second = issue(client)
    assert second.status_code == 200
    assert second.get_json()["token"] == data["token"]
    assert second.get_json()["reused"] is True


def test_issue_with_empty_body_uses_defaults(client):
    resp = client.post("/api/grants", headers=auth("P1"))
    assert resp.status_code == 201
    assert all(resp.get_json()["permissions"].values())


def test_issue_validation_errors(client):
    assert issue(client, ttl_hours=0).get_json()["error"] == "invalid_request"
    assert issue(client, permissions={"view_billing": True}).status_code == 400
    resp = client.post("/api/grants", data="ttl=5", headers=auth("P1"),
                       content_type="text/plain")
    assert resp.status_code == 400


def test_issue_rejects_non_finite_ttl(client):
    for raw in ("NaN", "Infinity", "-Infinity"):
        resp = client.post("/api/grants", data=f'{{"ttl_hours": {raw}}}',
                           content_type="application/json", headers=auth("P1"))
        assert resp.status_code == 400, raw
        assert resp.get_json()["error"] == "invalid_request"
    assert client.get("/api/grants", headers=auth("P1")).get_json()["grants"] == []


def test_issue_by_unknown_patient(client):
    resp = issue(client, subject="D1")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "issuer_not_found"


def test_list_and_revoke(client):
    token = issue(client).get_json()["token"]
    listed = client.get("/api/grants", headers=auth("P1")).get_json()["grants"]
    assert [g["token"] for g in listed] == [token]
    assert listed[0]["state"] == "issued"
    assert listed[0]["doctor"] is None
    assert listed[0]["patient"]["full_name"] == "Patient P1"

    assert client.delete(f"/api/grants/{token}", headers=auth("P2")).status_code == 403
    assert client.delete(f"/api/grants/{token}", headers=auth("P1")).status_code == 200
    assert client.delete(f"/api/grants/{token}", headers=auth("P1")).status_code == 200
    assert client.delete("/api/grants/ZZZZ9999", headers=auth("P1")).status_code == 404

    assert client.get("/api/grants", headers=auth("P1")).get_json()["grants"] == []
    everything = client.get("/api/grants?include_inactive=1", headers=auth("P1")).get_json()
    assert everything["grants"][0]["state"] == "revoked"

    resp = client.post(f"/api/grants/{token}/claim", headers=auth("D1"))
    assert resp.status_code == 404


# ── Tests: claim / view ──────────────────────────────────────────────

def test_claim_and_view_flow(client, clock):
    token = issue(client, permissions={"view_medications": True,
                                       "view_medical_history": False}).get_json()["token"]

    claim = client.post(f"/api/grants/{token.lower()}/claim", headers=auth("D1"))
    assert claim.status_code == 200
    assert claim.get_json()["grant"]["claimant_id"] == "D1"
    assert client.post(f"/api/grants/{token}/claim", headers=auth("D1")).status_code == 200

    rival = client.post(f"/api/grants/{token}/claim", headers=auth("D2"))
    assert rival.status_code == 409
    assert rival.get_json()["error"] == "already_claimed"

    view = client.get(f"/api/grants/{token}/view?scopes=view_medications,view_medical_history",
                      headers=auth("D1"))
    assert view.status_code == 200
    assert view.get_json()["view"]["scopes"] == ["view_medications"]
    assert view.get_json()["view"]["access_count"] == 1

    assert client.get(f"/api/grants/{token}/view", headers=auth("D2")).status_code == 403

    claimed = client.get("/api/grants/claimed", headers=auth("D1")).get_json()["grants"]
    assert claimed[0]["token"] == token
    assert claimed[0]["access_count"] == 1
    assert claimed[0]["patient"] == {"subject_id": "P1", "full_name": "Patient P1"}

    issued = client.get("/api/grants", headers=auth("P1")).get_json()["grants"]
    assert issued[0]["doctor"] == {
        "subject_id": "D1", "full_name": "Dr D1", "specialization": "Dermatology",
    }

    clock.advance(hours=25)
    expired = client.get(f"/api/grants/{token}/view", headers=auth("D1"))
    assert expired.status_code == 410
    assert expired.get_json()["error"] == "expired"


def test_view_repeated_scope_params(client):
    token = issue(client).get_json()["token"]
    client.post(f"/api/grants/{token}/claim", headers=auth("D1"))
    resp = client.get(f"/api/grants/{token}/view?scopes=view_diagnosis&scopes=nonsense",
                      headers=auth("D1"))
    assert resp.get_json()["view"]["scopes"] == ["view_diagnosis"]


def test_claim_by_unregistered_doctor(client):
    token = issue(client).get_json()["token"]
    resp = client.post(f"/api/grants/{token}/claim", headers=auth("stranger"))
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "claimant_not_found"


# ── Tests: misc ──────────────────────────────────────────────────────

def test_health_and_index(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"] is True
    assert client.get("/").get_json()["status"] == "running"


def test_unknown_endpoint_and_method(client):
    assert client.get("/api/nothing").status_code == 404
    assert client.put("/api/grants", headers=auth("P1")).status_code == 405
