"""Health cache and /api/system-status."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from conftest import build_app
from services.service_status import ConfigurableService, ServiceConfigStatus


class _Fake(ConfigurableService):
    def __init__(self, name, required, configured=True, connected=True):
        self.name, self.required = name, required
        self.configured, self.connected = configured, connected

    def is_required(self):
        return self.required

    async def check_connection(self):
        return self.connected

    async def check_configuration(self):
        return ServiceConfigStatus(name=self.name, configured=self.configured, connected=self.connected)


def _broken():
    raise RuntimeError("cannot build client")


@pytest.mark.asyncio
async def test_only_required_services_decide_health():
    from services import status_service as module

    checks = [
        ("Storage", False, lambda: _Fake("Storage", False, connected=False)),
        ("Email", True, lambda: _Fake("Email", True)),
    ]
    with patch.object(module, "SERVICE_CHECKS", checks):
        state = await module.StatusService().force_health_check()

    assert state.is_healthy is True
    assert [s.name for s in state.services] == ["Storage", "Email"]


@pytest.mark.asyncio
async def test_required_service_down_is_unhealthy():
    from services import status_service as module

    checks = [("Billing", True, lambda: _Fake("Billing", True, connected=False))]
    with patch.object(module, "SERVICE_CHECKS", checks):
        service = module.StatusService()
        await service.initialize()

    assert service.is_application_healthy() is False
    assert service.get_health_state().services[0].required is True


@pytest.mark.asyncio
async def test_service_that_cannot_be_created_is_reported():
    from services import status_service as module

    status = await module.check_service("Email", True, _broken)
    assert status.name == "Email Service"
    assert status.required is True
    assert status.configured is False
    assert "Failed to initialize email service" in status.error


@pytest.mark.asyncio
async def test_auth_status_lists_missing_base_url(monkeypatch):
    import settings
    from services.status_service import AuthStatusService

    monkeypatch.setattr(settings, "BASE_URL", "")
    status = await AuthStatusService().check_configuration()
    assert status.configured is False
    assert status.config_to_review == ["BASE_URL"]


@pytest.fixture
def status_client():
    from routes import system_status

    return TestClient(build_app(system_status.router))


def test_system_status_uses_cached_state(status_client):
    from services.status_service import HealthState
    from models import utc_now

    state = HealthState(is_healthy=True, last_checked=utc_now(), services=[])
    fake = MagicMock()
    fake.get_health_state.return_value = state
    fake.force_health_check = AsyncMock()

    with patch("routes.system_status.status_service", fake):
        response = status_client.get("/api/system-status")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["cache-control"] == "public, max-age=60"
    fake.force_health_check.assert_not_awaited()


def test_system_status_refresh_forces_check(status_client):
    from services.status_service import HealthState
    from services.service_status import ServiceStatus
    from models import utc_now

    failing = ServiceStatus(name="Database (MongoDB)", configured=True, connected=False, required=True)
    fake = MagicMock()
    fake.get_health_state.return_value = None
    fake.force_health_check = AsyncMock(
        return_value=HealthState(is_healthy=False, last_checked=utc_now(), services=[failing])
    )

    with patch("routes.system_status.status_service", fake):
        response = status_client.get("/api/system-status?refresh=true")

    body = response.json()
    assert body["status"] == "issues_detected"
    assert body["services"][0]["name"] == "Database (MongoDB)"
    assert "environment" in body["system_info"]
    assert response.headers["cache-control"] == "no-store, max-age=0"
