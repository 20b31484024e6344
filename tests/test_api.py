import json

import pytest
from fastapi.testclient import TestClient

from conftest import make_report
from reptileguard.errors import ClassificationError, StoreUnavailable
from reptileguard.main import app
from reptileguard.models.report import NotificationSummary, ReptileData
from reptileguard.services import report_view, reports, vision
from reptileguard.services.auth import get_current_principal


@pytest.fixture
def as_user(aws, monkeypatch):
    """Returns a function that switches the request principal."""
    monkeypatch.setattr(
        reports,
        "notify_officers_about_sighting",
        lambda report: NotificationSummary(success=True, notifiedCount=1, message="1 wildlife officer(s) have been notified via email."),
    )
    client = TestClient(app)

    def switch(principal):
        app.dependency_overrides[get_current_principal] = lambda: principal
        return client

    yield switch
    app.dependency_overrides.clear()


def _new_report(client, cobra, details):
    body = {
        "reptileData": cobra.model_dump(mode="json"),
        "details": details.model_dump(mode="json"),
        "images": ["data:image/jpeg;base64,AAAA"],
    }
    resp = client.post("/reports", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health():
    assert TestClient(app).get("/health").json()["status"] == "ok"


def test_create_and_list_own_reports(as_user, citizen, cobra, details):
    client = as_user(citizen)
    created = _new_report(client, cobra, details)

    assert created["report"]["status"] == "PENDING"
    assert created["report"]["id"].startswith("RPT-")
    assert created["notification"]["notifiedCount"] == 1

    listed = client.get("/reports").json()
    assert [r["id"] for r in listed] == [created["report"]["id"]]


def test_missing_location_field_is_400(as_user, citizen, cobra, details):
    client = as_user(citizen)
    details.location.pincode = ""
    body = {"reptileData": cobra.model_dump(mode="json"), "details": details.model_dump(mode="json"), "images": []}
    resp = client.post("/reports", json=body)
    assert resp.status_code == 400


def test_citizen_cannot_read_someone_elses_report(as_user, citizen, other_citizen, cobra, details):
    report_id = _new_report(as_user(citizen), cobra, details)["report"]["id"]

    assert as_user(citizen).get(f"/reports/{report_id}").status_code == 200
    assert as_user(other_citizen).get(f"/reports/{report_id}").status_code == 404
    assert as_user(other_citizen).get("/reports").json() == []


def test_officer_region_filters(as_user, citizen, officer, cobra, details):
    _new_report(as_user(citizen), cobra, details)
    client = as_user(officer)

    assert len(client.get("/reports").json()) == 1
    assert client.get("/reports", params={"state": "Kerala"}).json() == []
    assert len(client.get("/reports", params={"status": "PENDING"}).json()) == 1
    assert client.get("/reports", params={"status": "RESCUED"}).json() == []
    assert client.get("/reports", params={"view_mode": "MY"}).json() == []


def test_status_workflow_over_http(as_user, citizen, officer, cobra, details):
    report_id = _new_report(as_user(citizen), cobra, details)["report"]["id"]

    denied = as_user(citizen).patch(f"/reports/{report_id}/status", json={"status": "ASSIGNED"})
    assert denied.status_code == 403

    client = as_user(officer)
    no_evidence = client.patch(f"/reports/{report_id}/status", json={"status": "RESCUED"})
    assert no_evidence.status_code == 400

    rescued = client.patch(
        f"/reports/{report_id}/status",
        json={"status": "RESCUED", "notes": "Bagged safely", "rescueImages": ["img-1"]},
    )
    assert rescued.status_code == 200
    assert rescued.json()["rescueImageUrls"] == ["img-1"]
    assert rescued.json()["updatedByOfficer"]["id"] == officer.id

    missing = client.patch("/reports/RPT-000000/status", json={"status": "ASSIGNED"})
    assert missing.status_code == 404


def test_delete_requires_reason(as_user, citizen, officer, cobra, details):
    report_id = _new_report(as_user(citizen), cobra, details)["report"]["id"]
    client = as_user(officer)

    assert client.request("DELETE", f"/reports/{report_id}", json={"reason": "  "}).status_code == 400
    assert client.get(f"/reports/{report_id}").status_code == 200

    assert client.request("DELETE", f"/reports/{report_id}", json={"reason": "Test entry"}).status_code == 204
    assert client.get(f"/reports/{report_id}").status_code == 404


def test_stats_are_for_officers(as_user, citizen, officer, cobra, details):
    _new_report(as_user(citizen), cobra, details)
    assert as_user(citizen).get("/reports/stats").status_code == 403
    stats = as_user(officer).get("/reports/stats").json()
    assert stats["total"] == 1
    assert stats["pending"] == 1


def test_store_outage_is_503(as_user, officer, monkeypatch):
    def down(principal):
        raise StoreUnavailable("ProvisionedThroughputExceededException")

    monkeypatch.setattr(report_view, "fetch_reports", down)
    resp = as_user(officer).get("/reports")
    assert resp.status_code == 503


def test_identify(as_user, citizen, cobra, monkeypatch):
    monkeypatch.setattr(vision, "identify_reptile", lambda images: cobra)
    resp = as_user(citizen).post("/identify", json={"images": ["AAAA"]})
    assert resp.status_code == 200
    assert ReptileData.model_validate(resp.json()) == cobra


def test_identify_failure_is_502(as_user, citizen, monkeypatch):
    def fail(images):
        raise ClassificationError("Identification failed. Please retake the photo.")

    monkeypatch.setattr(vision, "identify_reptile", fail)
    resp = as_user(citizen).post("/identify", json={"images": ["AAAA"]})
    assert resp.status_code == 502
    assert "retake" in resp.json()["detail"]


def test_identify_needs_at_least_one_image(as_user, citizen):
    assert as_user(citizen).post("/identify", json={"images": []}).status_code == 422


def test_guest_profile_is_read_only(as_user):
    from reptileguard.models.user import UserRole
    from reptileguard.services.auth import guest_principal

    client = as_user(guest_principal(UserRole.CITIZEN))
    assert client.get("/user/me").json()["isGuest"] is True
    assert client.patch("/user/me", json={"name": "Someone"}).status_code == 403


def test_stream_sends_snapshot_then_error(as_user, officer, monkeypatch):
    calls = {"n": 0}

    def fetch_once(principal):
        calls["n"] += 1
        if calls["n"] == 1:
            return [make_report("RPT-000001", timestamp=1000)]
        raise StoreUnavailable("stream lost")

    monkeypatch.setattr(report_view, "fetch_reports", fetch_once)
    client = as_user(officer)

    events = []
    with client.stream("GET", "/reports/stream", params={"interval": 0.5}) as resp:
        assert resp.status_code == 200
        event = None
        for line in resp.iter_lines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                events.append((event, json.loads(line[len("data: "):])))

    assert [name for name, _ in events] == ["snapshot", "error"]
    assert [r["id"] for r in events[0][1]] == ["RPT-000001"]
    assert events[1][1]["detail"] == "stream lost"


def test_oversized_photos_are_a_bad_request(as_user, citizen, cobra, details):
    body = {
        "reptileData": cobra.model_dump(mode="json"),
        "details": details.model_dump(mode="json"),
        "images": ["data:image/jpeg;base64," + "A" * 450_000],
    }
    resp = as_user(citizen).post("/reports", json=body)
    assert resp.status_code == 400
    assert "too large" in resp.json()["detail"]
    assert as_user(citizen).get("/reports").json() == []
