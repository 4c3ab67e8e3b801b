# tests/conftest.py
import os

# Configuración antes de importar el servicio: BD en memoria y bcrypt rápido
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chat_service import schemas, services
from chat_service.db import Base, get_db
from chat_service.main import app

TEST_USERNAME = "alice"
TEST_EMAIL = "alice@example.com"
TEST_PASSWORD = "Secret123!"


@pytest.fixture
def session_factory():
    """
    Motor SQLite en memoria nuevo para cada prueba.
    StaticPool mantiene una sola conexión para que todas las sesiones vean las mismas tablas.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    """TestClient con get_db apuntando a la BD de la prueba."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def alice(db_session):
    """Usuario 'alice' creado directamente en la capa de servicio."""
    return services.create_user(
        db_session,
        schemas.UserCreate(username=TEST_USERNAME, email=TEST_EMAIL, password=TEST_PASSWORD, first_name="Alice"),
    )


@pytest.fixture
def registered_user(client):
    """Registra 'alice' por la API y devuelve el cuerpo de la respuesta."""
    r = client.post("/register", json={"username": TEST_USERNAME, "email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert r.status_code == 201, f"Registro falló: {r.status_code} {r.text}"
    return r.json()


@pytest.fixture
def auth_headers(client, registered_user):
    r = client.post("/login", data={"username": TEST_USERNAME, "password": TEST_PASSWORD})
    assert r.status_code == 200, f"Login falló: {r.status_code} {r.text}"
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
