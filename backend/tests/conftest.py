"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip MongoDB and the status warm-up when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import pytest
from unittest.mock import AsyncMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from auth import create_access_token
from utils.http import install_error_handlers


def build_app(*routers) -> FastAPI:
    """Small app with only the routers under test plus the shared error shape."""
    app = FastAPI()
    for router in routers:
        app.include_router(router)
    install_error_handlers(app)
    return app


def auth_headers(user_id: str = "user-1", role: str = "USER", email: str = "user@example.com") -> dict:
    token = create_access_token({"user_id": user_id, "email": email, "name": "Test User", "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def fake_repos():
    """Every repository method is awaitable; configure return values per test."""
    return AsyncMock()


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    from server import app
    return TestClient(app)
