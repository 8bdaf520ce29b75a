"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database with the feed, identity service,
blob store and notifier replaced by test instances.
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from pitchsync.identity import IdentityService
from pitchsync.notifications import NotificationError
from pitchsync.realtime import ChangeFeed
from pitchsync.storage import PITCH_DECK_MAX_BYTES, LocalBlobStore, UploadValidationError


@pytest.fixture()
def api(SessionLocal, tmp_path):
    from pitchsync.app import app, blob_store, change_feed, db_session, identity_service, notifier

    identity = IdentityService()
    feed = ChangeFeed()
    email = AsyncMock()
    store = LocalBlobStore(tmp_path / "blobs", "http://files.test/files")

    def override_db_session():
        session = SessionLocal()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    app.dependency_overrides[identity_service] = lambda: identity
    app.dependency_overrides[change_feed] = lambda: feed
    app.dependency_overrides[blob_store] = lambda: store
    app.dependency_overrides[notifier] = lambda: email
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, feed, email
    app.dependency_overrides.clear()


def _sign_up(c, name, role):
    email = f"{name.lower()}@example.com"
    resp = c.post("/api/auth/sign-up", json={"email": email, "password": "secret123", "name": name, "role": role})
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]["id"]


@pytest.fixture()
def users(api):
    c, _, _ = api
    founder_h, founder_id = _sign_up(c, "Fiona", "founder")
    investor_h, investor_id = _sign_up(c, "Ivan", "investor")
    return {"founder": (founder_h, founder_id), "investor": (investor_h, investor_id)}


SUBMISSION = {
    "company_name": "Acme",
    "description": "reusable rockets.",
    "industry": "Hardware",
    "location": "Berlin",
    "funding_stage": "Seed",
    "funding_amount": "$500,000",
    "answers": ["Launch costs", "Reusability", "3 pilots", "Ex-SpaceX", "10x in 3 years"],
}


@pytest.fixture()
def pitch(api, users):
    c, _, _ = api
    resp = c.post("/api/pitches", json=SUBMISSION, headers=users["founder"][0])
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAuthEndpoints:
    def test_sign_up_and_session(self, api, users):
        c, _, _ = api
        resp = c.get("/api/auth/session", headers=users["founder"][0])
        assert resp.status_code == 200
        assert resp.json()["role"] == "founder"
        assert resp.json()["name"] == "Fiona"

    def test_duplicate_sign_up(self, api, users):
        c, _, _ = api
        resp = c.post("/api/auth/sign-up", json={
            "email": "fiona@example.com", "password": "secret123", "name": "F2", "role": "founder",
        })
        assert resp.status_code == 409

    def test_invalid_role_is_schema_error(self, api):
        c, _, _ = api
        resp = c.post("/api/auth/sign-up", json={
            "email": "x@example.com", "password": "secret123", "name": "X", "role": "admin",
        })
        assert resp.status_code == 422

    def test_short_password(self, api):
        c, _, _ = api
        resp = c.post("/api/auth/sign-up", json={
            "email": "x@example.com", "password": "123", "name": "X", "role": "founder",
        })
        assert resp.status_code == 400

    def test_sign_in(self, api, users):
        c, _, _ = api
        resp = c.post("/api/auth/sign-in", json={"email": "ivan@example.com", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "investor"
        bad = c.post("/api/auth/sign-in", json={"email": "ivan@example.com", "password": "wrong-one"})
        assert bad.status_code == 401

    def test_sign_out(self, api, users):
        c, _, _ = api
        headers = users["founder"][0]
        assert c.post("/api/auth/sign-out", headers=headers).json() == {"revoked": 1}
        assert c.get("/api/auth/session", headers=headers).status_code == 401

    def test_missing_and_bad_tokens(self, api):
        c, _, _ = api
        assert c.get("/api/pitches").status_code == 401
        assert c.get("/api/pitches", headers={"Authorization": "Bearer nope"}).status_code == 401


class TestPitchEndpoints:
    def test_create_normalizes(self, pitch):
        assert pitch["funding_amount"] == "500000"
        assert pitch["founder_name"] == "Fiona"
        assert pitch["status"] == "new"
        assert [a["answer"] for a in pitch["answers"]][2] == "3 pilots"
        assert 65 <= pitch["ai_score"] < 95

    def test_only_founders_submit(self, api, users):
        c, _, _ = api
        resp = c.post("/api/pitches", json=SUBMISSION, headers=users["investor"][0])
        assert resp.status_code == 403

    def test_too_many_answers(self, api, users):
        c, _, _ = api
        body = {**SUBMISSION, "answers": ["a"] * 6}
        assert c.post("/api/pitches", json=body, headers=users["founder"][0]).status_code == 422

    def test_list_get_and_mine(self, api, users, pitch):
        c, _, _ = api
        listed = c.get("/api/pitches", headers=users["investor"][0]).json()
        assert [p["id"] for p in listed] == [pitch["id"]]
        assert c.get(f"/api/pitches/{pitch['id']}", headers=users["investor"][0]).json()["company_name"] == "Acme"
        mine = c.get("/api/pitches/mine", headers=users["founder"][0]).json()
        assert [p["id"] for p in mine] == [pitch["id"]]
        assert c.get("/api/pitches/mine", headers=users["investor"][0]).status_code == 403

    def test_get_404(self, api, users):
        c, _, _ = api
        assert c.get("/api/pitches/missing", headers=users["investor"][0]).status_code == 404

    def test_status_update(self, api, users, pitch):
        c, feed, _ = api
        seen = []
        feed.subscribe("pitches", "UPDATE", seen.append)
        resp = c.put(f"/api/pitches/{pitch['id']}/status", json={"status": "rejected"},
                     headers=users["investor"][0])
        assert resp.json()["status"] == "rejected"
        assert seen[0].row_id == pitch["id"]
        bad = c.put(f"/api/pitches/{pitch['id']}/status", json={"status": "archived"},
                    headers=users["investor"][0])
        assert bad.status_code == 422

    def test_bulk_status(self, api, users, pitch):
        c, _, _ = api
        resp = c.post("/api/pitches/bulk-status", json={"pitch_ids": [pitch["id"], "x"], "status": "forwarded"},
                      headers=users["investor"][0])
        assert resp.json() == {"updated": 1}


class TestPitchActions:
    def test_action_notifies(self, api, users, pitch):
        c, _, email = api
        resp = c.post(f"/api/pitches/{pitch['id']}/actions", json={"action": "shortlisted", "notes": "Great"},
                      headers=users["investor"][0])
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "pitch_id": pitch["id"], "status": "shortlisted", "notified": True}
        email.pitch_action.assert_awaited_once()

    def test_action_survives_notification_failure(self, api, users, pitch):
        c, _, email = api
        email.pitch_action.side_effect = NotificationError("down")
        resp = c.post(f"/api/pitches/{pitch['id']}/actions", json={"action": "rejected"},
                      headers=users["investor"][0])
        assert resp.status_code == 200
        assert resp.json()["notified"] is False
        got = c.get(f"/api/pitches/{pitch['id']}", headers=users["investor"][0]).json()
        assert got["status"] == "rejected"

    def test_action_errors(self, api, users, pitch):
        c, _, _ = api
        inv = users["investor"][0]
        assert c.post("/api/pitches/missing/actions", json={"action": "rejected"}, headers=inv).status_code == 404
        assert c.post(f"/api/pitches/{pitch['id']}/actions", json={"action": "new"}, headers=inv).status_code == 400
        assert c.post(f"/api/pitches/{pitch['id']}/actions", json={"action": "rejected"},
                      headers=users["founder"][0]).status_code == 403


class TestReviewEndpoints:
    def test_tags(self, api, users, pitch):
        c, _, _ = api
        inv = users["investor"][0]
        tag = c.post(f"/api/pitches/{pitch['id']}/tags", json={"name": "AI"}, headers=inv)
        assert tag.status_code == 201
        assert [t["name"] for t in c.get(f"/api/pitches/{pitch['id']}/tags", headers=inv).json()] == ["AI"]
        assert c.delete(f"/api/tags/{tag.json()['id']}", headers=inv).json() == {"ok": True}
        assert c.delete(f"/api/tags/{tag.json()['id']}", headers=inv).status_code == 404
        assert c.post("/api/pitches/missing/tags", json={"name": "AI"}, headers=inv).status_code == 404

    def test_notes(self, api, users, pitch):
        c, _, _ = api
        inv = users["investor"][0]
        assert c.post(f"/api/pitches/{pitch['id']}/notes", json={"content": "Follow up"}, headers=inv).status_code == 201
        assert c.post(f"/api/pitches/{pitch['id']}/notes", json={"content": " "}, headers=inv).status_code == 400
        notes = c.get(f"/api/pitches/{pitch['id']}/notes", headers=inv).json()
        assert [n["content"] for n in notes] == ["Follow up"]


class TestUploadEndpoints:
    def test_deck(self, api, users):
        c, _, _ = api
        resp = c.post("/api/uploads/pitch-deck", files={"file": ("deck.pdf", b"%PDF-1.4", "application/pdf")},
                      headers=users["founder"][0])
        assert resp.status_code == 201
        assert resp.json()["url"].startswith("http://files.test/files/pitch-deck/pitch-deck-")

    def test_deck_wrong_type(self, api, users):
        c, _, _ = api
        resp = c.post("/api/uploads/pitch-deck", files={"file": ("deck.png", b"png", "image/png")},
                      headers=users["founder"][0])
        assert resp.status_code == 400

    def test_video(self, api, users):
        c, _, _ = api
        resp = c.post("/api/uploads/pitch-video", files={"file": ("intro.mov", b"moov", "video/quicktime")},
                      headers=users["founder"][0])
        assert resp.status_code == 201
        assert resp.json()["url"].endswith(".mov")

    def test_oversized_deck(self, api, users):
        c, _, _ = api
        body = b"\0" * (PITCH_DECK_MAX_BYTES + 1)
        resp = c.post("/api/uploads/pitch-deck", files={"file": ("deck.pdf", body, "application/pdf")},
                      headers=users["founder"][0])
        assert resp.status_code == 400
        assert "10MB" in resp.json()["detail"]

    def test_video_body_is_read_up_to_limit(self, api, users, monkeypatch):
        import pitchsync.app as app_module

        seen = []

        def capture(store, filename, content_type, data):
            seen.append(len(data))
            raise UploadValidationError("too large")

        monkeypatch.setattr(app_module, "PITCH_VIDEO_MAX_BYTES", 16)
        monkeypatch.setattr(app_module, "upload_pitch_video", capture)
        c, _, _ = api
        resp = c.post("/api/uploads/pitch-video", files={"file": ("a.mp4", b"v" * 1000, "video/mp4")},
                      headers=users["founder"][0])
        assert resp.status_code == 400
        assert seen == [17]


class TestMessageEndpoints:
    def test_conversation_flow(self, api, users):
        c, feed, email = api
        (fh, fid), (ih, iid) = users["founder"], users["investor"]
        seen = []
        feed.subscribe("messages", "INSERT", seen.append, match={"receiver_id": fid})

        sent = c.post("/api/messages", json={"receiver_id": fid, "content": "Hi Fiona"}, headers=ih)
        assert sent.status_code == 201
        assert len(seen) == 1
        email.new_message.assert_awaited_once()

        assert c.get("/api/messages/unread-count", headers=fh).json() == {"count": 1}
        convs = c.get("/api/conversations", headers=fh).json()
        assert convs[0]["user_id"] == iid
        assert convs[0]["user_name"] == "Ivan"
        assert convs[0]["unread_count"] == 1

        thread = c.get(f"/api/conversations/{iid}/messages", headers=fh).json()
        assert [m["content"] for m in thread] == ["Hi Fiona"]
        assert thread[0]["sender_role"] == "investor"
        assert c.get("/api/messages/unread-count", headers=fh).json() == {"count": 1}

        assert c.post(f"/api/conversations/{iid}/read", headers=fh).json() == {"marked": 1}
        assert c.post(f"/api/conversations/{iid}/read", headers=fh).json() == {"marked": 0}
        assert c.get("/api/messages/unread-count", headers=fh).json() == {"count": 0}

    def test_send_survives_email_failure(self, api, users):
        c, _, email = api
        email.new_message.side_effect = NotificationError("down")
        resp = c.post("/api/messages", json={"receiver_id": users["founder"][1], "content": "hello"},
                      headers=users["investor"][0])
        assert resp.status_code == 201

    def test_send_errors(self, api, users):
        c, _, _ = api
        ih, iid = users["investor"]
        assert c.post("/api/messages", json={"receiver_id": "ghost", "content": "x"}, headers=ih).status_code == 404
        assert c.post("/api/messages", json={"receiver_id": iid, "content": "x"}, headers=ih).status_code == 400
        assert c.post("/api/messages", json={"receiver_id": users["founder"][1], "content": " "},
                      headers=ih).status_code == 400
        assert c.post("/api/messages", json={"receiver_id": users["founder"][1], "content": "x", "pitch_id": "missing"},
                      headers=ih).status_code == 400

    def test_realtime_rejects_unknown_table(self, api, users):
        c, _, _ = api
        assert c.get("/api/realtime?table=profiles", headers=users["founder"][0]).status_code == 400


class TestProfilesAndInsights:
    def test_profiles(self, api, users):
        c, _, _ = api
        fh = users["founder"][0]
        investors = c.get("/api/profiles?role=investor", headers=fh).json()
        assert [p["name"] for p in investors] == ["Ivan"]
        assert c.get("/api/profiles?search=fio", headers=fh).json()[0]["role"] == "founder"
        assert c.get(f"/api/profiles/{users['investor'][1]}", headers=fh).json()["name"] == "Ivan"
        assert c.get("/api/profiles/missing", headers=fh).status_code == 404
        assert c.get("/api/profiles?role=admin", headers=fh).status_code == 400

    def test_reference_lists(self, api):
        c, _, _ = api
        ref = c.get("/api/reference").json()
        assert "Series A" in ref["funding_stages"]
        assert "Global" in ref["regions"]
        assert "Web3/Crypto" in ref["industries"]
        assert len(ref["tags"]) == 10

    def test_portfolio(self, api, users, pitch):
        c, _, _ = api
        ih = users["investor"][0]
        c.post(f"/api/pitches/{pitch['id']}/actions", json={"action": "shortlisted"}, headers=ih)
        data = c.get("/api/portfolio", headers=ih).json()
        assert data["count"] == 1
        assert data["total_funding"] == 500000
        assert data["by_industry"] == [{"name": "Hardware", "value": 500000}]
        assert c.get("/api/portfolio", headers=users["founder"][0]).status_code == 403

    def test_analytics(self, api, users, pitch):
        c, _, _ = api
        data = c.get("/api/analytics?time_range=1W", headers=users["investor"][0]).json()
        assert data["total"] == 1
        assert data["pitch_flow"][0]["count"] == 1
        assert data["industry_data"] == [{"name": "Hardware", "value": 1}]
