"""
Care Circle HTTP API

Exercises the routers end to end through TestClient: status codes, response
shapes, the public token routes, and the lifecycle scenarios from invite to
revocation.
"""
from uuid import uuid4

from conftest import auth_headers
from main import _filter_sensitive_data, _loggable_path
from routers.care_circle import to_api_exception
from services.care_circle.errors import (
    CareCircleInternalError,
    CareCircleNotFoundError,
    InviteExpiredError,
)


def _invite(client, patient, email="trusted@x.com", tier=None):
    body = {"email": email, "name": "Terry"}
    if tier:
        body["sharing_tier"] = tier
    response = client.post("/care-circle/invite", json=body, headers=auth_headers(patient))
    assert response.status_code == 201, response.text
    return response.json()


def _token(invite):
    return invite["invite_url"].rsplit("/", 1)[1]


def _connect(client, patient, trusted, tier=None):
    invite = _invite(client, patient, trusted.email, tier)
    response = client.post(f"/care-circle/accept/{_token(invite)}", headers=auth_headers(trusted))
    assert response.status_code == 200, response.text
    return invite["connection"]["id"]


class TestErrorMapping:
    def test_expired_is_gone_on_public_routes(self):
        error = InviteExpiredError("This invitation has expired")
        assert to_api_exception(error).status_code == 400
        assert to_api_exception(error, public=True).status_code == 410

    def test_not_found(self):
        exc = to_api_exception(CareCircleNotFoundError("Connection not found"))
        assert exc.status_code == 404
        assert exc.error_code == "NOT_FOUND"

    def test_internal(self):
        exc = to_api_exception(CareCircleInternalError("Care Circle storage is unavailable"))
        assert exc.status_code == 500

    def test_tokens_are_masked_in_logs(self):
        assert _loggable_path("/care-circle/invite/" + "a" * 96) == "/care-circle/invite/{token}"
        assert _loggable_path("/care-circle/connections") == "/care-circle/connections"

    def test_tokens_are_masked_in_error_reports(self):
        event = {"request": {
            "url": "https://api.example.com/care-circle/decline/" + "a" * 96,
            "headers": {"authorization": "Bearer x", "user-agent": "pytest"},
        }}
        filtered = _filter_sensitive_data(event)
        assert filtered["request"]["url"].endswith("/decline/[redacted]")
        assert "authorization" not in filtered["request"]["headers"]


class TestInviteEndpoint:
    def test_requires_auth(self, client):
        response = client.post("/care-circle/invite", json={"email": "trusted@x.com"})
        assert response.status_code == 401

    def test_creates_invite(self, client, patient, dispatcher):
        data = _invite(client, patient)

        assert data["message"] == "Invitation sent to trusted@x.com"
        assert data["connection"]["status"] == "pending"
        assert data["connection"]["sharing_tier"] == "data_only"
        assert data["connection"]["invite_expires_at"] is not None
        assert len(_token(data)) == 96
        assert data["invite_message"].startswith("Pat Jones would like to add you to their Care Circle.")
        assert data["invite_url"] in data["invite_message"]
        assert dispatcher.kinds() == ["invite"]

    def test_invalid_email(self, client, patient):
        response = client.post(
            "/care-circle/invite", json={"email": "not-an-email"}, headers=auth_headers(patient)
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_missing_body_field(self, client, patient):
        response = client.post("/care-circle/invite", json={}, headers=auth_headers(patient))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid request"

    def test_duplicate(self, client, patient):
        _invite(client, patient)
        response = client.post(
            "/care-circle/invite", json={"email": "Trusted@X.com"}, headers=auth_headers(patient)
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "An invitation is already pending for this email"

    def test_self_invite(self, client, patient):
        response = client.post(
            "/care-circle/invite", json={"email": patient.email}, headers=auth_headers(patient)
        )
        assert response.status_code == 400


class TestPublicTokenRoutes:
    def test_preview(self, client, patient):
        invite = _invite(client, patient, tier="full")

        response = client.get(f"/care-circle/invite/{_token(invite)}")

        assert response.status_code == 200
        data = response.json()
        assert data["patient_name"] == "Pat Jones"
        assert data["sharing_tier"] == "full"
        assert "patient@example.com" not in response.text
        assert "trusted@x.com" not in response.text

    def test_preview_unknown_token(self, client):
        response = client.get(f"/care-circle/invite/{'f' * 96}")
        assert response.status_code == 404
        assert response.json()["detail"] == "Invitation not found or has already been used"

    def test_preview_malformed_token(self, client):
        assert client.get("/care-circle/invite/abc").status_code == 400

    def test_preview_expired(self, client, service, patient, clock):
        clock.advance(days=-8)
        connection = service.invitations.invite(patient, "trusted@x.com")

        response = client.get(f"/care-circle/invite/{connection.invite_token}")
        assert response.status_code == 410

    def test_preview_cancelled(self, client, patient):
        invite = _invite(client, patient)
        client.delete(f"/care-circle/{invite['connection']['id']}", headers=auth_headers(patient))

        response = client.get(f"/care-circle/invite/{_token(invite)}")
        assert response.status_code == 410
        assert response.json()["error_code"] == "INVITE_GONE"

    def test_decline(self, client, patient, dispatcher):
        invite = _invite(client, patient)

        response = client.post(f"/care-circle/decline/{_token(invite)}")

        assert response.status_code == 200
        assert response.json() == {
            "message": "Invitation declined",
            "connection_id": invite["connection"]["id"],
            "status": "declined",
        }
        assert dispatcher.kinds() == ["invite", "declined"]

    def test_decline_twice(self, client, patient):
        invite = _invite(client, patient)
        client.post(f"/care-circle/decline/{_token(invite)}")

        response = client.post(f"/care-circle/decline/{_token(invite)}")
        assert response.status_code == 404
        assert response.json()["detail"] == "Invitation not found or has already been used"

    def test_decline_expired(self, client, service, patient, clock):
        clock.advance(days=-8)
        connection = service.invitations.invite(patient, "trusted@x.com")

        response = client.post(f"/care-circle/decline/{connection.invite_token}")
        assert response.status_code == 410


class TestAcceptEndpoint:
    def test_accept(self, client, patient, trusted_user, dispatcher):
        invite = _invite(client, patient)

        response = client.post(f"/care-circle/accept/{_token(invite)}", headers=auth_headers(trusted_user))

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "You are now connected to Pat Jones's Care Circle"
        assert data["connection"]["status"] == "active"
        assert data["connection"]["patient"]["id"] == patient.id
        assert data["permissions"]["can_view_checkins"] is False
        assert dispatcher.kinds() == ["invite", "accepted"]

    def test_requires_auth(self, client, patient):
        invite = _invite(client, patient)
        assert client.post(f"/care-circle/accept/{_token(invite)}").status_code == 401

    def test_expired_is_bad_request_when_authenticated(self, client, service, patient, trusted_user, clock):
        clock.advance(days=-8)
        connection = service.invitations.invite(patient, "trusted@x.com")

        response = client.post(
            f"/care-circle/accept/{connection.invite_token}", headers=auth_headers(trusted_user)
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVITE_EXPIRED"

    def test_own_invite(self, client, patient):
        invite = _invite(client, patient)
        response = client.post(f"/care-circle/accept/{_token(invite)}", headers=auth_headers(patient))
        assert response.status_code == 400

    def test_already_connected_through_another_address(self, client, patient, trusted_user):
        first = _invite(client, patient, "first@x.com")
        second = _invite(client, patient, "second@x.com", tier="full")
        client.post(f"/care-circle/accept/{_token(first)}", headers=auth_headers(trusted_user))

        response = client.post(f"/care-circle/accept/{_token(second)}", headers=auth_headers(trusted_user))
        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

        checkins = client.get(f"/care-circle/shared/{patient.id}/checkins", headers=auth_headers(trusted_user))
        assert checkins.status_code == 403


class TestConnectionManagement:
    def test_list_both_sides(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user)
        _invite(client, patient, "second@x.com")

        as_patient = client.get("/care-circle/connections", headers=auth_headers(patient)).json()
        assert as_patient["counts"]["as_patient"] == {"total": 2, "active": 1, "pending": 1}
        assert as_patient["as_trusted_person"] == []

        as_trusted = client.get("/care-circle/connections", headers=auth_headers(trusted_user)).json()
        assert as_trusted["counts"]["as_trusted_person"] == {"total": 1, "active": 1}
        assert as_trusted["as_trusted_person"][0]["patient"]["name"] == "Pat Jones"
        assert as_trusted["as_trusted_person"][0]["permissions"]["can_view_summary"] is True

    def test_change_tier(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)

        response = client.put(
            f"/care-circle/{connection_id}/tier",
            json={"sharing_tier": "full"},
            headers=auth_headers(patient),
        )

        assert response.status_code == 200
        assert response.json()["old_tier"] == "data_only"
        assert response.json()["new_tier"] == "full"

    def test_change_tier_by_trusted_person(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)
        response = client.put(
            f"/care-circle/{connection_id}/tier",
            json={"sharing_tier": "full"},
            headers=auth_headers(trusted_user),
        )
        assert response.status_code == 403

    def test_change_tier_invalid(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)
        response = client.put(
            f"/care-circle/{connection_id}/tier",
            json={"sharing_tier": "everything"},
            headers=auth_headers(patient),
        )
        assert response.status_code == 400

    def test_resend(self, client, patient, dispatcher):
        invite = _invite(client, patient)

        response = client.post(
            f"/care-circle/{invite['connection']['id']}/resend", headers=auth_headers(patient)
        )

        assert response.status_code == 200
        assert _token(response.json()) != _token(invite)
        assert dispatcher.kinds() == ["invite", "invite"]

    def test_revoke(self, client, patient, trusted_user, dispatcher):
        connection_id = _connect(client, patient, trusted_user)

        response = client.delete(f"/care-circle/{connection_id}", headers=auth_headers(trusted_user))

        assert response.status_code == 200
        assert response.json()["revoked_by"] == "trusted_person"
        assert dispatcher.sent[-1]["kind"] == "revoked"
        assert dispatcher.sent[-1]["to"] == "patient@example.com"

        again = client.delete(f"/care-circle/{connection_id}", headers=auth_headers(patient))
        assert again.status_code == 400

    def test_revoke_stranger(self, client, patient, trusted_user, outsider):
        connection_id = _connect(client, patient, trusted_user)
        response = client.delete(f"/care-circle/{connection_id}", headers=auth_headers(outsider))
        assert response.status_code == 403

    def test_unknown_connection(self, client, patient):
        response = client.delete(f"/care-circle/{uuid4()}", headers=auth_headers(patient))
        assert response.status_code == 404

    def test_malformed_connection_id(self, client, patient):
        response = client.delete("/care-circle/not-a-uuid", headers=auth_headers(patient))
        assert response.status_code == 400


class TestAuditEndpoints:
    def test_patient_reads_audit_log(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)

        response = client.get(f"/care-circle/audit/{connection_id}", headers=auth_headers(patient))

        assert response.status_code == 200
        data = response.json()
        assert [e["action_type"] for e in data["entries"]] == ["accepted", "invited"]
        assert data["action_counts"] == {"invited": 1, "accepted": 1}
        assert data["pagination"]["total"] == 2
        assert data["entries"][0]["actor"]["id"] == trusted_user.id

    def test_trusted_person_cannot_read_audit_log(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)
        response = client.get(f"/care-circle/audit/{connection_id}", headers=auth_headers(trusted_user))
        assert response.status_code == 403
        assert response.json()["detail"] == "Only the patient can view the audit log"

    def test_bad_pagination(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)
        response = client.get(
            f"/care-circle/audit/{connection_id}?limit=0", headers=auth_headers(patient)
        )
        assert response.status_code == 400

    def test_activity_filter(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user)
        client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))

        response = client.get(
            "/care-circle/activity?action_types=viewed_summary", headers=auth_headers(trusted_user)
        )

        assert response.status_code == 200
        assert [e["action_type"] for e in response.json()["entries"]] == ["viewed_summary"]

    def test_activity_unknown_action(self, client, patient):
        response = client.get("/care-circle/activity?action_types=hacked", headers=auth_headers(patient))
        assert response.status_code == 400

    def test_access_log(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user)
        client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))
        client.get(f"/care-circle/shared/{patient.id}/moods", headers=auth_headers(trusted_user))

        response = client.get("/care-circle/access-log", headers=auth_headers(patient))

        assert response.status_code == 200
        assert [e["action_type"] for e in response.json()["entries"]] == ["viewed_moods", "viewed_summary"]


class TestSharedEndpoints:
    def test_summary(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user)
        response = client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))
        assert response.status_code == 200
        assert response.json()["patient_name"] == "Pat Jones"

    def test_no_connection_is_forbidden_not_missing(self, client, outsider):
        response = client.get("/care-circle/shared/999999/summary", headers=auth_headers(outsider))
        assert response.status_code == 403

    def test_malformed_patient_id(self, client, trusted_user):
        response = client.get("/care-circle/shared/abc/summary", headers=auth_headers(trusted_user))
        assert response.status_code == 400

    def test_end_date_out_of_range(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user)
        response = client.get(
            f"/care-circle/shared/{patient.id}/moods",
            params={"end_date": "0001-01-05"},
            headers=auth_headers(trusted_user),
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_export_download(self, client, patient, trusted_user, add_checkin):
        _connect(client, patient, trusted_user, tier="full")
        add_checkin(patient)

        response = client.get(f"/care-circle/shared/{patient.id}/export", headers=auth_headers(trusted_user))

        assert response.status_code == 200
        assert response.headers["content-disposition"].startswith('attachment; filename="carecircle_pat_jones_')
        assert response.json()["summary"]["total_checkins"] == 1

    def test_export_csv_rejected(self, client, patient, trusted_user):
        _connect(client, patient, trusted_user, tier="full")
        response = client.get(
            f"/care-circle/shared/{patient.id}/export?format=csv", headers=auth_headers(trusted_user)
        )
        assert response.status_code == 400


class TestLifecycleScenarios:
    def test_invite_accept_restrict_revoke(self, client, patient, trusted_user, add_checkin):
        # A: invite with data_only -> pending, nothing shared yet
        invite = _invite(client, patient, "trusted@x.com", tier="data_only")
        connection_id = invite["connection"]["id"]
        assert invite["connection"]["status"] == "pending"
        pending = client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))
        assert pending.status_code == 403

        # B: a distinct account accepts within the window
        accepted = client.post(f"/care-circle/accept/{_token(invite)}", headers=auth_headers(trusted_user))
        assert accepted.status_code == 200
        assert accepted.json()["connection"]["status"] == "active"
        assert accepted.json()["permissions"] == {
            "can_view_summary": True,
            "can_view_moods": True,
            "can_view_checkins": False,
            "can_export_data": False,
            "can_receive_alerts": True,
        }

        # C: check-in details stay hidden under data_only while active
        add_checkin(patient)
        checkins = client.get(f"/care-circle/shared/{patient.id}/checkins", headers=auth_headers(trusted_user))
        assert checkins.status_code == 403
        summary = client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))
        assert summary.status_code == 200

        # D: patient revokes; access ends and the trail is intact
        revoked = client.delete(f"/care-circle/{connection_id}", headers=auth_headers(patient))
        assert revoked.status_code == 200
        assert revoked.json()["status"] == "revoked"
        assert revoked.json()["revoked_by"] == "patient"

        after = client.get(f"/care-circle/shared/{patient.id}/summary", headers=auth_headers(trusted_user))
        assert after.status_code == 403

        audit = client.get(f"/care-circle/audit/{connection_id}", headers=auth_headers(patient)).json()
        lifecycle = [
            e["action_type"] for e in reversed(audit["entries"])
            if e["action_type"] in ("invited", "accepted", "revoked")
        ]
        assert lifecycle == ["invited", "accepted", "revoked"]

    def test_stale_pending_invite_shows_as_revoked(self, client, service, patient, clock):
        # E: a pending invite older than the TTL is swept when connections are listed
        clock.advance(days=-8)
        stale = service.invitations.invite(patient, "late@x.com")

        response = client.get("/care-circle/connections", headers=auth_headers(patient))

        assert response.status_code == 200
        rows = {row["id"]: row for row in response.json()["as_patient"]}
        assert rows[str(stale.id)]["status"] == "revoked"
        assert rows[str(stale.id)]["invite_expires_at"] is None
        assert response.json()["counts"]["as_patient"]["pending"] == 0

    def test_reinvite_after_revoke(self, client, patient, trusted_user):
        connection_id = _connect(client, patient, trusted_user)
        client.delete(f"/care-circle/{connection_id}", headers=auth_headers(patient))

        again = _invite(client, patient, trusted_user.email)
        assert again["connection"]["id"] != connection_id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_ping(client):
    assert client.get("/ping").json() == {"pong": True}
