"""
Fixtures comunes: BD SQLite en memoria, cliente HTTP y tokens de prueba.

Las variables de entorno se fijan ANTES de importar la app: database.py y
main.py leen su configuración al importarse.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from auth import create_access_token
from database import Base, get_db
from main import app

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def bearer(subject: str, email: str = None, name: str = None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject, email=email, name=name)}"}


@pytest.fixture
def auth_headers():
    return bearer("user-ana", "ana@example.com", "Ana")


@pytest.fixture
def other_headers():
    return bearer("user-luis", "luis@example.com", "Luis")


# ─────────────────────────────────────────────────────────────────────────────
# Helpers para crear datos por la API
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_project(client, auth_headers):
    def _make(**fields):
        payload = {"name": "Proyecto", **fields}
        response = client.post("/api/projects", json=payload, headers=auth_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make


@pytest.fixture
def make_skill(client, auth_headers):
    def _make(**fields):
        payload = {"name": "Python", "category": "language", **fields}
        response = client.post("/api/skills", json=payload, headers=auth_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make
