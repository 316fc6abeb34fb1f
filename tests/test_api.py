from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_city, make_lock, make_user
from gatekeeper.api.v1 import access as access_routes
from gatekeeper.api.v1 import auth as auth_routes
from gatekeeper.core.database import Base, SessionLocal, engine
from gatekeeper.core.security import get_password_hash, utcnow
from gatekeeper.main import app
from gatekeeper.models.credential import RFIDKey
from gatekeeper.models.permission import UserPermission
from gatekeeper.services.rate_limiter import SlidingWindowLimiter

PASSWORD = "correct-horse-battery"


@pytest.fixture
def seeded(monkeypatch):
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(auth_routes, "rate_limiter", SlidingWindowLimiter())
    monkeypatch.setattr(access_routes, "rate_limiter", SlidingWindowLimiter())

    db = SessionLocal()
    try:
        city_a, address_a = make_city(db, "Springfield")
        city_b, address_b = make_city(db, "Shelbyville")
        hashed = get_password_hash(PASSWORD)
        lenny = make_user(db, "lenny", city=city_a, password_hash=hashed)
        world = SimpleNamespace(
            city_a=city_a.id,
            city_b=city_b.id,
            lock_a=make_lock(db, address_a, name="Plant gate").id,
            lock_b=make_lock(db, address_b, name="Depot").id,
            admin_a=make_user(db, "burns", role="ADMIN", city=city_a, password_hash=hashed).email,
            user_a=SimpleNamespace(id=lenny.id, email=lenny.email),
            root=make_user(db, "root", role="SUPER_ADMIN", password_hash=hashed).email,
        )
        db.add_all([
            RFIDKey(card_id="CARD-1", user_id=world.user_a.id),
            UserPermission(
                user_id=world.user_a.id,
                lock_id=world.lock_a,
                valid_from=utcnow() - timedelta(days=1),
            ),
        ])
        db.commit()
    finally:
        db.close()

    yield world
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(seeded):
    return TestClient(app)


def _login(client, email):
    response = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()


def _auth(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def test_health_reports_database(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["readiness"]["database"]["ok"] is True


def test_login_me_refresh_logout_flow(client, seeded):
    tokens = _login(client, seeded.admin_a)
    assert tokens["token_type"] == "bearer"
    assert tokens["user"]["role"] == "ADMIN"

    me = client.get("/api/v1/auth/me", headers=_auth(tokens))
    assert me.status_code == 200
    assert me.json()["city_id"] == seeded.city_a

    rotated = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["error"] == "Invalid refresh token"

    logout = client.post("/api/v1/auth/logout", headers=_auth(rotated.json()))
    assert logout.status_code == 200
    assert logout.json()["data"]["revoked_refresh_tokens"] == 1
    after = client.post("/api/v1/auth/refresh", json={"refresh_token": rotated.json()["refresh_token"]})
    assert after.status_code == 401


def test_bad_password_is_generic(client, seeded):
    response = client.post("/api/v1/auth/login", json={"email": seeded.admin_a, "password": "nope"})
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"] == "Invalid credentials"
    assert response.json()["code"] == "invalid_credentials"


def test_me_requires_token(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["error"] == "Access token is required"


def test_tap_on_unknown_lock_is_404(client):
    response = client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": "missing"})
    assert response.status_code == 404
    assert response.json()["details"] == {"lock_id": "missing"}
    assert response.json()["code"] == "not_found"
    assert response.headers["X-Request-ID"] == response.json()["request_id"]


def test_tap_returns_decision(client, seeded):
    granted = client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": seeded.lock_a})
    denied = client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": seeded.lock_b})

    assert granted.status_code == 200
    assert granted.json()["granted"] is True
    assert granted.json()["data"]["result"] == "GRANTED"
    assert denied.status_code == 200
    assert denied.json()["granted"] is False
    assert denied.json()["data"]["result"] == "DENIED_NO_PERMISSION"


def test_blank_card_is_validation_error(client, seeded):
    response = client.post("/api/v1/access/attempt", json={"card_id": "   ", "lock_id": seeded.lock_a})
    assert response.status_code == 422
    assert response.json()["details"]["errors"]


def test_tap_rate_limit_per_lock(client, seeded, monkeypatch):
    monkeypatch.setattr(access_routes.settings, "TAP_RATE_LIMIT_PER_MINUTE", 2)
    payload = {"card_id": "CARD-1", "lock_id": seeded.lock_a}

    codes = [client.post("/api/v1/access/attempt", json=payload).status_code for _ in range(3)]

    assert codes == [200, 200, 429]


def test_taps_on_unknown_locks_leave_no_throttle_state(client, seeded):
    for n in range(50):
        response = client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": f"ghost-{n}"})
        assert response.status_code == 404

    assert len(access_routes.rate_limiter) == 0


def test_access_logs_follow_city_scope(client, seeded):
    client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": seeded.lock_a})
    client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": seeded.lock_b})

    admin = _auth(_login(client, seeded.admin_a))
    scoped = client.get("/api/v1/access/logs", params={"city_id": seeded.city_b}, headers=admin).json()
    assert scoped["pagination"]["total"] == 1
    assert scoped["data"][0]["city_id"] == seeded.city_a

    root = _auth(_login(client, seeded.root))
    everything = client.get("/api/v1/access/logs", headers=root).json()
    assert everything["pagination"]["total"] == 2
    only_b = client.get("/api/v1/access/logs", params={"city_id": seeded.city_b}, headers=root).json()
    assert [row["lock_id"] for row in only_b["data"]] == [seeded.lock_b]


def test_permission_routes_require_supervisor(client, seeded):
    user = _auth(_login(client, seeded.user_a.email))
    body = {"user_id": seeded.user_a.id, "lock_id": seeded.lock_b}

    assert client.post("/api/v1/permissions", json=body, headers=user).status_code == 403

    admin = _auth(_login(client, seeded.admin_a))
    out_of_scope = client.post("/api/v1/permissions", json=body, headers=admin)
    assert out_of_scope.status_code == 403
    assert out_of_scope.json()["error"] == "Resource is outside your city scope"
    assert out_of_scope.json()["code"] == "out_of_scope"


def test_permission_and_card_management(client, seeded):
    admin = _auth(_login(client, seeded.admin_a))

    created = client.post(
        "/api/v1/permissions",
        json={"user_id": seeded.user_a.id, "lock_id": seeded.lock_a, "can_access": False},
        headers=admin,
    )
    assert created.status_code == 201
    assert created.json()["can_access"] is False

    card = client.post(
        "/api/v1/rfid-keys", json={"card_id": "CARD-2", "user_id": seeded.user_a.id}, headers=admin
    )
    assert card.status_code == 200
    deactivated = client.post(f"/api/v1/rfid-keys/{card.json()['id']}/deactivate", headers=admin)
    assert deactivated.json()["is_active"] is False

    revoked = client.delete(f"/api/v1/permissions/{created.json()['id']}", headers=admin)
    assert revoked.status_code == 200


def test_event_stream_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/api/v1/events/ws?token=garbage"):
            pass
    assert excinfo.value.code == 1008


def test_event_stream_delivers_city_events(client, seeded):
    tokens = _login(client, seeded.admin_a)

    with client.websocket_connect(f"/api/v1/events/ws?token={tokens['access_token']}") as ws:
        client.post("/api/v1/access/attempt", json={"card_id": "CARD-1", "lock_id": seeded.lock_a})
        message = ws.receive_json()

    assert message["event"] == "access.created"
    assert message["data"]["city_id"] == seeded.city_a
    assert message["data"]["result"] == "GRANTED"
