# tests/test_api.py
"""Pruebas de los endpoints HTTP del Chat Service."""

import uuid
from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from chat_service import db as chat_db
from chat_service.db import get_db
from chat_service.main import app
from chat_service.utils import issue_token

from conftest import TEST_EMAIL, TEST_PASSWORD, TEST_USERNAME


def create_room(client, headers, title="General", password="pw", capacity=10):
    r = client.post("/rooms", json={"title": title, "password": password, "capacity": capacity}, headers=headers)
    assert r.status_code == 201, f"Esperado 201 pero se obtuvo {r.status_code}: {r.text}"
    return r.json()


# --- Monitoreo ---

def test_health_and_metrics(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["database"] == "ok"

    r = client.get("/metrics")
    assert r.status_code == 200
    assert "chat_requests_total" in r.text


# --- Registro y login ---

def test_register_returns_profile_without_secrets(registered_user):
    assert registered_user["username"] == TEST_USERNAME
    assert registered_user["email"] == TEST_EMAIL
    assert registered_user["id"]
    assert "password" not in registered_user
    assert "password_hash" not in registered_user
    assert "password_salt" not in registered_user


def test_register_duplicate_username(client, registered_user):
    """Verifica que no se puede registrar un username existente."""
    r = client.post("/register", json={"username": TEST_USERNAME, "email": "new@example.com", "password": "newpassword"})
    assert r.status_code == 409, f"Esperado 409 pero se obtuvo {r.status_code}"
    assert "Username" in r.json()["detail"]


def test_register_duplicate_email(client, registered_user):
    r = client.post("/register", json={"username": "someone", "email": TEST_EMAIL, "password": "newpassword"})
    assert r.status_code == 409
    assert "Email" in r.json()["detail"]


def test_register_validates_fields(client):
    r = client.post("/register", json={"username": "x" * 256, "email": "a@example.com", "password": "longenough"})
    assert r.status_code == 422
    r = client.post("/register", json={"username": "short", "email": "a@example.com", "password": "short"})
    assert r.status_code == 422


def test_login_success_returns_token_and_profile(client, registered_user):
    r = client.post("/login", data={"username": TEST_USERNAME, "password": TEST_PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["access_token"]
    assert body["token_type"] == "bearer"
    assert body["id"] == registered_user["id"]
    assert "password_hash" not in body


def test_login_failures_are_indistinguishable(client, registered_user):
    """Usuario inexistente y contraseña incorrecta deben producir la misma respuesta."""
    wrong_password = client.post("/login", data={"username": TEST_USERNAME, "password": "wrong"})
    unknown_user = client.post("/login", data={"username": f"nouser_{uuid.uuid4()}", "password": "anything"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()


def test_verify_token(client, auth_headers, registered_user):
    token = auth_headers["Authorization"].split(" ")[1]
    r = client.get("/verify", params={"token": token})
    assert r.status_code == 200
    assert r.json()["sub"] == registered_user["id"]
    assert r.json()["username"] == TEST_USERNAME

    r = client.get("/verify", params={"token": "garbage"})
    assert r.status_code == 401


# --- Usuarios ---

def test_users_require_token(client):
    assert client.get("/users").status_code == 401
    assert client.get("/users", headers={"Authorization": "Bearer invalid"}).status_code == 401


def test_users_me_and_lookup(client, auth_headers, registered_user):
    r = client.get("/users/me", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["username"] == TEST_USERNAME
    assert r.json()["last_login"] is not None

    r = client.get(f"/users/{registered_user['id']}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["email"] == TEST_EMAIL

    r = client.get("/users", headers=auth_headers)
    assert [u["username"] for u in r.json()] == [TEST_USERNAME]

    r = client.get(f"/users/{uuid.uuid4()}", headers=auth_headers)
    assert r.status_code == 404


# --- Salas ---

def test_room_end_to_end(client, auth_headers):
    """
    1. Crea la sala 'General' con contraseña 'pw' y capacidad 10.
    2. Se autentica usando el título y el ID.
    3. El perfil no expone hash ni salt.
    """
    room = create_room(client, auth_headers)
    assert room["capacity"] == 10
    assert room["total_users"] == 0

    for key in ("General", room["id"]):
        r = client.post(f"/rooms/{key}/authenticate", json={"password": "pw"})
        assert r.status_code == 200
        profile = r.json()
        assert profile["id"] == room["id"]
        assert "password_hash" not in profile
        assert "password_salt" not in profile


def test_room_authentication_failures_are_indistinguishable(client, auth_headers):
    create_room(client, auth_headers)
    wrong_password = client.post("/rooms/General/authenticate", json={"password": "nope"})
    unknown_room = client.post("/rooms/Elsewhere/authenticate", json={"password": "pw"})
    assert wrong_password.status_code == unknown_room.status_code == 401
    assert wrong_password.json() == unknown_room.json()


def test_create_room_requires_token_and_unique_title(client, auth_headers):
    r = client.post("/rooms", json={"title": "General", "password": "pw"})
    assert r.status_code == 401

    create_room(client, auth_headers)
    r = client.post("/rooms", json={"title": "General", "password": "other"}, headers=auth_headers)
    assert r.status_code == 409

    r = client.post("/rooms", json={"title": "Zero", "password": "pw", "capacity": 0}, headers=auth_headers)
    assert r.status_code == 422


def test_join_and_leave_room(client, auth_headers):
    room = create_room(client, auth_headers, title="Pair", capacity=1)

    r = client.post(f"/rooms/{room['id']}/join", json={"password": "pw"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["total_users"] == 1

    r = client.post(f"/rooms/{room['id']}/join", json={"password": "pw"}, headers=auth_headers)
    assert r.status_code == 409, "La sala llena debe rechazar nuevas entradas"

    r = client.post(f"/rooms/{room['id']}/join", json={"password": "wrong"}, headers=auth_headers)
    assert r.status_code == 401

    r = client.post(f"/rooms/{room['id']}/leave", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["total_users"] == 0

    r = client.get("/rooms", headers=auth_headers)
    assert [x["title"] for x in r.json()] == ["Pair"]


# --- Mensajes ---

def test_post_and_read_messages(client, auth_headers, registered_user):
    room = create_room(client, auth_headers)
    for text in ["first", "second"]:
        r = client.post(f"/rooms/{room['id']}/messages", json={"message": text}, headers=auth_headers)
        assert r.status_code == 201
        assert r.json()["user_id"] == registered_user["id"]
        assert r.json()["room_id"] == room["id"]

    r = client.get(f"/rooms/{room['id']}/messages", headers=auth_headers)
    assert r.status_code == 200
    assert [m["message"] for m in r.json()] == ["first", "second"]


def test_message_validation_and_missing_room(client, auth_headers):
    room = create_room(client, auth_headers)
    r = client.post(f"/rooms/{room['id']}/messages", json={"message": "x" * 256}, headers=auth_headers)
    assert r.status_code == 422

    r = client.post("/rooms/missing/messages", json={"message": "hi"}, headers=auth_headers)
    assert r.status_code == 404
    assert client.get("/rooms/missing/messages", headers=auth_headers).status_code == 404


def test_register_rejects_malformed_email(client):
    for email in ("not@an-email", "no-at-sign", "two@@example.com"):
        r = client.post("/register", json={"username": "mallory", "email": email, "password": "longenough"})
        assert r.status_code == 422, f"'{email}' debería rechazarse, se obtuvo {r.status_code}"


def test_room_title_shaped_like_uuid_is_rejected(client, auth_headers):
    r = client.post("/rooms", json={"title": str(uuid.uuid4()), "password": "pw"}, headers=auth_headers)
    assert r.status_code == 422


# --- Fallos de la base de datos ---

def _failing(statement):
    def fail(*args, **kwargs):
        raise OperationalError(statement, {}, Exception("database is down"))
    return fail


def test_store_failure_on_register_returns_500(client, session_factory):
    def broken_commit_db():
        db = session_factory()
        db.commit = _failing("INSERT INTO Users")
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = broken_commit_db
    r = client.post("/register", json={"username": TEST_USERNAME, "email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert r.status_code == 500, f"Esperado 500 pero se obtuvo {r.status_code}: {r.text}"


def test_get_db_turns_database_errors_into_503(client, session_factory, monkeypatch):
    """
    1. Se usa el get_db real con una fábrica de sesiones cuyas consultas fallan.
    2. El error de SQLAlchemy que escapa del endpoint se traduce a 503.
    """
    def broken_session():
        db = session_factory()
        db.query = _failing("SELECT Users")
        return db

    app.dependency_overrides.clear()
    monkeypatch.setattr(chat_db, "SessionLocal", broken_session)
    token = issue_token(SimpleNamespace(id=str(uuid.uuid4()), username=TEST_USERNAME))

    r = client.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 503
    assert r.json()["detail"] == "Database error."


def test_get_db_without_session_factory_returns_503(client, monkeypatch):
    app.dependency_overrides.clear()
    monkeypatch.setattr(chat_db, "SessionLocal", None)
    assert client.get("/health").status_code == 503
