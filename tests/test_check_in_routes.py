"""
HTTP tests for the check-in and participant QR endpoints.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from eventgate.core.security import create_access_token
from eventgate.db.session import get_db
from eventgate.models.check_in import CheckIn
from eventgate.models.system_log import SystemLog
from eventgate.models.user import User
from eventgate.schemas.event import RegistrationStatusEnum
from main import app


def ticket(user_id="U1", event_id="E1"):
    return {"qrData": json.dumps({"eventId": event_id, "userId": user_id})}


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


class TestRouteFixtures:

    @pytest.fixture
    def client(self, session_factory):
        def override_get_db():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = override_get_db
        yield TestClient(app)
        app.dependency_overrides.clear()

    @pytest.fixture
    def admin_headers(self, admin):
        return auth(admin)

    @pytest.fixture
    def participant(self, make_registration, db):
        make_registration("U1", full_name="Ada Participant", dependents=["Ben", "Cleo"], registration_id="R1")
        return db.query(User).filter(User.id == "U1").one()


class TestAuthorization(TestRouteFixtures):

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_token(self, client, event):
        response = client.post("/checkin/events/E1/verify", json=ticket())

        assert response.status_code in (401, 403)

    def test_invalid_token(self, client, event):
        response = client.post(
            "/checkin/events/E1/verify",
            json=ticket(),
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    def test_participants_cannot_operate_scanner(self, client, participant):
        response = client.post("/checkin/events/E1/verify", json=ticket(), headers=auth(participant))

        assert response.status_code == 403


class TestVerifyAndApprove(TestRouteFixtures):

    def test_verify_shows_pending_card(self, client, db, admin_headers, participant):
        response = client.post("/checkin/events/E1/verify", json=ticket(), headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "pending_approval"
        assert body["resolved"]["participant"]["full_name"] == "Ada Participant"
        assert [d["full_name"] for d in body["resolved"]["dependents"]] == ["Ben", "Cleo"]
        assert db.query(CheckIn).count() == 0

    def test_approve_then_approve_again(self, client, db, admin, admin_headers, participant):
        first = client.post("/checkin/events/E1/approve", json=ticket(), headers=admin_headers)
        second = client.post("/checkin/events/E1/approve", json=ticket(), headers=admin_headers)

        assert first.status_code == 200
        assert first.json()["kind"] == "success"
        assert first.json()["check_in"]["dependent_count"] == 2
        assert second.status_code == 200
        assert second.json()["kind"] == "already_checked_in"
        assert second.json()["check_in"]["id"] == first.json()["check_in"]["id"]
        assert second.json()["performed_by_name"] == admin.email
        assert db.query(CheckIn).count() == 1

    def test_verify_after_admission(self, client, admin_headers, participant):
        client.post("/checkin/events/E1/approve", json=ticket(), headers=admin_headers)

        response = client.post("/checkin/events/E1/verify", json=ticket(), headers=admin_headers)

        assert response.json()["kind"] == "already_checked_in"

    @pytest.mark.parametrize("qr_data, code", [
        ("", "malformed_payload"),
        ("not json", "malformed_payload"),
        (json.dumps({"eventId": "E1"}), "incomplete_payload"),
        (json.dumps({"eventId": "E2", "userId": "U1"}), "wrong_event_payload"),
        (json.dumps({"eventId": "E1", "userId": "U404"}), "not_found"),
    ])
    def test_rejected_scans_are_cards(self, client, admin_headers, participant, qr_data, code):
        response = client.post("/checkin/events/E1/approve", json={"qrData": qr_data}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["kind"] == "invalid"
        assert response.json()["error"]["code"] == code

    def test_pending_registration_is_not_admitted(self, client, db, admin_headers, make_registration):
        make_registration("U2", status=RegistrationStatusEnum.pending)

        response = client.post("/checkin/events/E1/approve", json=ticket("U2"), headers=admin_headers)

        assert response.json()["error"]["code"] == "not_found"
        assert db.query(CheckIn).count() == 0

    def test_store_outage_is_503(self, client, admin_headers, participant):
        with patch(
            "eventgate.controllers.registration.get_approved_registration",
            side_effect=OperationalError("SELECT", {}, Exception("database is unreachable")),
        ):
            response = client.post("/checkin/events/E1/verify", json=ticket(), headers=admin_headers)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "lookup_failed"

    def test_unknown_event(self, client, admin_headers, event):
        response = client.post("/checkin/events/E404/verify", json=ticket(event_id="E404"), headers=admin_headers)

        assert response.status_code == 404


class TestManageCheckIns(TestRouteFixtures):

    @pytest.fixture
    def check_in_id(self, client, admin_headers, participant):
        response = client.post("/checkin/events/E1/approve", json=ticket(), headers=admin_headers)
        return response.json()["check_in"]["id"]

    def test_cancel(self, client, db, admin_headers, check_in_id):
        response = client.post(f"/checkin/{check_in_id}/cancel", headers=admin_headers)

        assert response.status_code == 204
        roster = client.get("/checkin/events/E1/check-ins", headers=admin_headers)
        assert roster.json() == []

    def test_cancel_unknown(self, client, admin_headers, event):
        response = client.post("/checkin/no-such-check-in/cancel", headers=admin_headers)

        assert response.status_code == 404

    def test_update_notes(self, client, admin_headers, check_in_id):
        response = client.patch(
            f"/checkin/{check_in_id}/notes",
            json={"notes": "Needs a front-row seat"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["notes"] == "Needs a front-row seat"

    def test_roster(self, client, admin, admin_headers, check_in_id):
        response = client.get("/checkin/events/E1/check-ins", headers=admin_headers)

        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["id"] == check_in_id
        assert entries[0]["performed_by_name"] == admin.email
        assert [d["full_name"] for d in entries[0]["dependent_snapshot"]] == ["Ben", "Cleo"]

    def test_roster_flattens_dependents(self, client, admin, admin_headers, check_in_id):
        response = client.get("/checkin/events/E1/roster", headers=admin_headers)

        assert response.status_code == 200
        rows = response.json()
        assert [(row["participant_type"], row["full_name"]) for row in rows] == [
            ("primary", "Ada Participant"),
            ("dependent", "Ben"),
            ("dependent", "Cleo"),
        ]
        assert {row["primary_participant"] for row in rows} == {"Ada Participant"}
        assert {row["performed_by_name"] for row in rows} == {admin.email}

    def test_roster_search(self, client, admin_headers, check_in_id):
        response = client.get("/checkin/events/E1/roster", params={"q": "cleo"}, headers=admin_headers)

        assert [row["full_name"] for row in response.json()] == ["Cleo"]

    def test_roster_csv_export(self, client, admin_headers, check_in_id):
        response = client.get("/checkin/events/E1/roster.csv", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("check_in_id,participant_type,full_name,email")
        assert len(lines) == 4
        assert lines[1].startswith(f"{check_in_id},primary,Ada Participant,u1@example.com")
        assert lines[2].startswith(f"{check_in_id},dependent,Ben,,8,child,Ada Participant")

    def test_roster_unknown_event(self, client, admin_headers, event):
        response = client.get("/checkin/events/NOPE/roster.csv", headers=admin_headers)

        assert response.status_code == 404

    def test_stats(self, client, admin_headers, check_in_id, make_registration):
        make_registration("U2")

        stored = client.get("/checkin/events/E1/stats", headers=admin_headers).json()
        refreshed = client.post("/checkin/events/E1/stats/refresh", headers=admin_headers).json()

        assert stored["total_registered"] == 1
        assert stored["total_checked_in"] == 3
        assert refreshed["total_registered"] == 2
        assert refreshed["total_pending"] == 1
        assert refreshed["check_in_rate"] == 50


class TestParticipantQr(TestRouteFixtures):

    def test_participant_gets_own_ticket(self, client, participant):
        response = client.get("/events/E1/participants/U1/qr", headers=auth(participant))

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "no-store"
        assert response.content.startswith(b"\x89PNG")

    def test_admin_gets_any_ticket(self, client, db, admin_headers, participant):
        response = client.get("/events/E1/participants/U1/qr", headers=admin_headers)

        assert response.status_code == 200
        # Handing out a ticket changes nothing, so nothing is audited
        assert db.query(SystemLog).count() == 0

    def test_other_participant_is_forbidden(self, client, participant, make_registration, db):
        make_registration("U2")
        other = db.query(User).filter(User.id == "U2").one()

        response = client.get("/events/E1/participants/U1/qr", headers=auth(other))

        assert response.status_code == 403

    def test_unapproved_registration_has_no_ticket(self, client, make_registration, db):
        make_registration("U2", status=RegistrationStatusEnum.pending)
        user = db.query(User).filter(User.id == "U2").one()

        response = client.get("/events/E1/participants/U2/qr", headers=auth(user))

        assert response.status_code == 404
