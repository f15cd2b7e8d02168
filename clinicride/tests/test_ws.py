import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app import ws
from app.models import Role
from app.presence import PresenceRelay
from app.security import issue_token, verify_token


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(ws, "relay", PresenceRelay(verify_token=verify_token))
    app = FastAPI()
    app.include_router(ws.router)
    with TestClient(app) as c:
        yield c


def test_join_before_auth_is_not_lost(client):
    with client.websocket_connect("/ws") as sock:
        sock.send_json({"type": "join_booking", "bookingId": "b1"})
        sock.send_json({"type": "auth", "token": issue_token("u-patient", Role.PATIENT)})

        assert sock.receive_json() == {"type": "authenticated", "userId": "u-patient", "role": "PATIENT"}
        assert sock.receive_json() == {"type": "joined_booking", "bookingId": "b1"}
        assert set(ws.relay.rooms) == {"b1"}


def test_bad_token_gets_error_and_connection_stays_open(client):
    with client.websocket_connect("/ws") as sock:
        sock.send_json({"type": "auth", "token": "garbage"})
        assert sock.receive_json() == {"type": "error", "message": "Invalid token"}

        sock.send_json({"type": "ping"})
        assert sock.receive_json() == {"type": "pong"}


def test_location_reaches_peer_but_not_sender(client):
    with client.websocket_connect("/ws") as patient, client.websocket_connect("/ws") as guardian:
        for sock, user, role in ((patient, "u-patient", Role.PATIENT), (guardian, "u-guardian", Role.GUARDIAN)):
            sock.send_json({"type": "auth", "token": issue_token(user, role)})
            sock.send_json({"type": "join_booking", "bookingId": "b1"})
            assert sock.receive_json()["type"] == "authenticated"
            assert sock.receive_json()["type"] == "joined_booking"

        guardian.send_json({"type": "location_update", "location": {"lat": 17.43, "lng": 78.44, "heading": 90}})
        update = patient.receive_json()
        assert update["type"] == "location_updated"
        assert update["userId"] == "u-guardian"
        assert update["location"]["heading"] == 90

        # the next thing the sender sees is its own pong, not its own location
        guardian.send_json({"type": "ping"})
        assert guardian.receive_json() == {"type": "pong"}
