import pytest
from sqlmodel import select
from starlette.websockets import WebSocketDisconnect

from app.models.message import Message
from app.models.user import User
from app.routers import auth as auth_router
from tests.helpers import auth_headers


def report_form(**overrides):
    data = {
        "kind": "found",
        "item_name": "wallet",
        "category": "Wallet",
        "description": "Brown leather wallet near the fountain",
        "event_date": "2024-05-02",
        "contact_details": "555-0100",
        "latitude": "1.0",
        "longitude": "1.0",
    }
    data.update(overrides)
    return data


PHOTO = [("photos", ("wallet.jpg", b"jpeg-bytes", "image/jpeg"))]


def test_root(client):
    assert client.get("/").json() == {"status": "ok"}


class TestReportsApi:

    def test_create_report_with_match(self, client, alice, bob, make_report):
        lost = make_report(alice, "lost", "Black Wallet")

        response = client.post("/reports/create", data=report_form(), files=PHOTO, headers=auth_headers(bob))

        assert response.status_code == 200
        body = response.json()
        assert body["report"]["kind"] == "found"
        assert body["report"]["photo_urls"] == ["https://cdn.test/reports/wallet.jpg"]
        assert [m["report_b_id"] for m in body["matches"]] == [str(lost.id)]

        feed = client.get("/notifications/", headers=auth_headers(alice)).json()["notifications"]
        assert len(feed) == 1
        assert feed[0]["type"] == "match"
        assert feed[0]["lost_report_id"] == str(lost.id)
        assert feed[0]["found_report_id"] == body["report"]["id"]
        assert feed[0]["time_ago"] == "0m ago"

    def test_invalid_category(self, client, bob):
        response = client.post(
            "/reports/create", data=report_form(category="Spaceship"), files=PHOTO, headers=auth_headers(bob),
        )

        assert response.status_code == 400
        assert "category" in response.json()["detail"]

    def test_malformed_date(self, client, bob):
        response = client.post(
            "/reports/create", data=report_form(event_date="02/05/2024"), files=PHOTO, headers=auth_headers(bob),
        )

        assert response.status_code == 400

    def test_requires_authentication(self, client):
        response = client.post("/reports/create", data=report_form(), files=PHOTO)

        assert response.status_code in (401, 403)

    def test_list_and_status_transitions(self, client, alice, make_report):
        report = make_report(alice, "lost", "umbrella", category="Other")

        listed = client.get("/reports/all", params={"kind": "lost"}).json()["reports"]
        assert [r["id"] for r in listed] == [str(report.id)]

        response = client.post(f"/reports/{report.id}/close", headers=auth_headers(alice))
        assert response.json() == {"ok": True, "status": "closed"}

        response = client.post(f"/reports/{report.id}/resolve", headers=auth_headers(alice))
        assert response.status_code == 409

        assert client.get("/reports/all").json()["reports"] == []

        mine = client.get("/reports/mine", headers=auth_headers(alice)).json()
        assert [r["status"] for r in mine["lost_reports"]] == ["closed"]

    def test_unknown_report(self, client):
        assert client.get("/reports/not-a-report").status_code == 404


@pytest.fixture
def room_id(client, alice, bob, make_report):
    lost = make_report(alice, "lost", "Black Wallet")
    found = make_report(bob, "found", "wallet")

    response = client.post(
        "/chat/rooms",
        json={"lost_report_id": str(lost.id), "found_report_id": str(found.id)},
        headers=auth_headers(alice),
    )
    assert response.status_code == 200
    return response.json()["room_id"]


class TestNotificationsApi:

    def test_open_chat_from_match_notification(self, client, alice, bob, make_report):
        make_report(alice, "lost", "Black Wallet")
        client.post("/reports/create", data=report_form(), files=PHOTO, headers=auth_headers(bob))

        [notif] = client.get("/notifications/", headers=auth_headers(alice)).json()["notifications"]
        assert client.get("/notifications/count", headers=auth_headers(alice)).json() == {"count": 1}

        response = client.post(f"/notifications/{notif['id']}/open-chat", headers=auth_headers(alice))

        assert response.json()["room_id"] == f"{notif['lost_report_id']}_{notif['found_report_id']}"
        assert client.get("/notifications/count", headers=auth_headers(alice)).json() == {"count": 0}

    def test_delete_notification(self, client, alice, bob, make_report):
        make_report(alice, "lost", "Black Wallet")
        client.post("/reports/create", data=report_form(), files=PHOTO, headers=auth_headers(bob))
        [notif] = client.get("/notifications/", headers=auth_headers(alice)).json()["notifications"]

        assert client.delete(f"/notifications/{notif['id']}", headers=auth_headers(bob)).status_code == 404
        assert client.delete(f"/notifications/{notif['id']}", headers=auth_headers(alice)).json() == {"ok": True}
        assert client.get("/notifications/", headers=auth_headers(alice)).json() == {"notifications": []}


class TestChatApi:

    def test_send_list_and_delete(self, client, session, alice, bob, room_id):
        sent = client.post(f"/chat/{room_id}/messages", json={"content": " hi there "}, headers=auth_headers(bob))
        assert sent.status_code == 200
        message_id = sent.json()["message_id"]

        messages = client.get(f"/chat/{room_id}/messages", headers=auth_headers(alice)).json()["messages"]
        assert [(m["id"], m["content"], m["type"]) for m in messages] == [(message_id, "hi there", "text")]

        response = client.delete(f"/chat/{room_id}/messages/{message_id}", headers=auth_headers(alice))
        assert response.status_code == 403

        response = client.delete(f"/chat/{room_id}/messages/{message_id}", headers=auth_headers(bob))
        assert response.json() == {"ok": True}
        assert session.exec(select(Message)).all() == []

    def test_empty_message_rejected(self, client, alice, room_id):
        response = client.post(f"/chat/{room_id}/messages", json={"content": "   "}, headers=auth_headers(alice))

        assert response.status_code == 400

    def test_send_image(self, client, alice, room_id):
        response = client.post(
            f"/chat/{room_id}/images",
            files={"image": ("cat.jpg", b"12345", "image/jpeg")},
            headers=auth_headers(alice),
        )
        assert response.status_code == 200

        [message] = client.get(f"/chat/{room_id}/messages", headers=auth_headers(alice)).json()["messages"]
        assert message["type"] == "image"
        assert message["content"] == f"https://cdn.test/chat/{room_id}/cat.jpg"
        assert message["metadata"] == {"width": 640, "height": 480, "size": 5}

    def test_outsider_is_rejected(self, client, carol, room_id):
        response = client.get(f"/chat/{room_id}/messages", headers=auth_headers(carol))

        assert response.status_code == 403

    def test_malformed_room_id(self, client, alice):
        response = client.get("/chat/not_a-room/messages", headers=auth_headers(alice))

        assert response.status_code == 400

    def test_websocket_streams_room(self, client, alice, bob, room_id):
        client.post(f"/chat/{room_id}/messages", json={"content": "hello"}, headers=auth_headers(bob))

        token = auth_headers(alice)["Authorization"].split()[1]

        with client.websocket_connect(f"/chat/{room_id}/ws?token={token}") as ws:
            snapshot = ws.receive_json()
            assert snapshot["event"] == "snapshot"
            assert [m["content"] for m in snapshot["messages"]] == ["hello"]

            ws.send_json({"action": "send", "content": "is it mine?"})
            inserted = ws.receive_json()
            assert inserted["event"] == "insert"
            assert inserted["message"]["content"] == "is it mine?"

            ws.send_json({"action": "delete", "message_id": snapshot["messages"][0]["id"]})
            assert ws.receive_json() == {"event": "error", "detail": "You can only delete your own messages"}

            ws.send_json({"action": "delete", "message_id": inserted["message"]["id"]})
            deleted = ws.receive_json()
            assert deleted["event"] == "delete"
            assert deleted["message"]["id"] == inserted["message"]["id"]

    def test_websocket_answers_malformed_commands(self, client, alice, room_id):
        token = auth_headers(alice)["Authorization"].split()[1]

        with client.websocket_connect(f"/chat/{room_id}/ws?token={token}") as ws:
            assert ws.receive_json()["event"] == "snapshot"

            ws.send_json(["send", "hi"])
            assert ws.receive_json() == {"event": "error", "detail": "Commands must be JSON objects"}

            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "detail": "Commands must be JSON"}

            ws.send_json({"action": "fly"})
            assert ws.receive_json() == {"event": "error", "detail": "Unknown action: fly"}

            # the socket is still usable
            ws.send_json({"action": "send", "content": "still here"})
            inserted = ws.receive_json()
            assert inserted["event"] == "insert"
            assert inserted["message"]["content"] == "still here"

    def test_websocket_rejects_bad_token(self, client, room_id):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/chat/{room_id}/ws?token=garbage") as ws:
                ws.receive_json()


class TestGoogleAuth:

    def test_creates_user_and_issues_token(self, client, session, monkeypatch):
        monkeypatch.setattr(
            auth_router.id_token,
            "verify_oauth2_token",
            lambda token, request, client_id: {"sub": "google-123", "email": "dana@example.com", "name": "Dana"},
        )

        response = client.post("/auth/google", json={"id_token": "signed"})

        assert response.status_code == 200
        assert response.json()["user_id"] == "google-123"
        user = session.exec(select(User).where(User.public_id == "google-123")).one()
        assert user.email == "dana@example.com"

        profile_feed = client.get(
            "/notifications/count",
            headers={"Authorization": f"Bearer {response.json()['access_token']}"},
        )
        assert profile_feed.json() == {"count": 0}

    def test_invalid_google_token(self, client, monkeypatch):
        def reject(token, request, client_id):
            raise ValueError("bad token")

        monkeypatch.setattr(auth_router.id_token, "verify_oauth2_token", reject)

        assert client.post("/auth/google", json={"id_token": "forged"}).status_code == 401
