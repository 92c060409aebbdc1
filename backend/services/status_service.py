"""
System Status Service - configuration and connectivity of every integration.

The result of the last check is cached as a HealthState so the health probe
and the status page do not hit every provider on each request. Only services
marked required decide overall health.
"""
import logging
from datetime import datetime
from typing import Optional, List, Callable, Awaitable

from pydantic import BaseModel

import settings
from database import database
from models import utc_now
from services.service_status import ConfigurableService, ServiceConfigStatus, ServiceStatus, missing_settings

logger = logging.getLogger(__name__)


class DatabaseStatusService(ConfigurableService):
    SERVICE_NAME = "Database (MongoDB)"
    DESCRIPTION = "The following features are impacted: every feature (application data store)"

    def __init__(self):
        self._last_connection_error: Optional[str] = None

    def is_required(self) -> bool:
        return True

    async def check_connection(self) -> bool:
        try:
            if await database.ping():
                return True
            self._last_connection_error = "Database not connected"
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            self._last_connection_error = f"Connection error: {e}"
        return False

    async def check_configuration(self) -> ServiceConfigStatus:
        required = {"MONGO_URL": settings.MONGO_URL, "DB_NAME": settings.DB_NAME}
        missing = missing_settings(required)
        if missing:
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                config_to_review=missing,
                error="Configuration missing",
                description=self.DESCRIPTION,
            )
        if not await self.check_connection():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=True,
                connected=False,
                config_to_review=list(required.keys()),
                error=self._last_connection_error or "Connection failed",
                description=self.DESCRIPTION,
            )
        return ServiceConfigStatus(name=self.SERVICE_NAME, configured=True, connected=True)


class AuthStatusService(ConfigurableService):
    """Token signing only needs secrets; there is nothing remote to reach."""

    SERVICE_NAME = "Auth (JWT)"
    DESCRIPTION = "The following features are impacted: login, client portal links"

    async def check_connection(self) -> bool:
        return True

    async def check_configuration(self) -> ServiceConfigStatus:
        required = {
            "JWT_SECRET": settings.JWT_SECRET,
            "CLIENT_PORTAL_JWT_SECRET": settings.CLIENT_PORTAL_JWT_SECRET,
            "BASE_URL": settings.BASE_URL,
        }
        missing = missing_settings(required)
        if missing:
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                config_to_review=missing,
                error="Configuration missing",
                description=self.DESCRIPTION,
            )
        return ServiceConfigStatus(name=self.SERVICE_NAME, configured=True, connected=True)


class HealthState(BaseModel):
    is_healthy: bool
    last_checked: datetime
    services: List[ServiceStatus]


def _storage():
    from services.storage_service import storage_service
    return storage_service


def _email():
    from services.email_service import email_service
    return email_service


def _billing():
    from services.billing_service import billing_service
    return billing_service


def _invoice():
    from services.invoice_service import invoice_service
    return invoice_service


# (fallback name, required when the service cannot even be created, factory)
SERVICE_CHECKS: List[tuple] = [
    ("Storage", False, _storage),
    ("Email", True, _email),
    ("Database", True, DatabaseStatusService),
    ("Billing", True, _billing),
    ("Auth", False, AuthStatusService),
    ("Invoice", False, _invoice),
]


async def check_service(label: str, required_fallback: bool, factory: Callable[[], ConfigurableService]) -> ServiceStatus:
    try:
        service = factory()
        config_status = await service.check_configuration()
        return ServiceStatus(**config_status.model_dump(), required=service.is_required())
    except Exception as e:
        logger.error(f"{label} service status check failed: {e}")
        return ServiceStatus(
            name=f"{label} Service",
            configured=False,
            connected=False,
            required=required_fallback,
            error=f"Failed to initialize {label.lower()} service: {e}",
        )


class StatusService:
    def __init__(self):
        self._health: Optional[HealthState] = None
        self._initialized = False

    async def check_all_services(self) -> List[ServiceStatus]:
        return [await check_service(*entry) for entry in SERVICE_CHECKS]

    async def _perform_health_check(self) -> HealthState:
        try:
            services = await self.check_all_services()
            is_healthy = all(s.configured and s.connected for s in services if s.required)
            self._health = HealthState(is_healthy=is_healthy, last_checked=utc_now(), services=services)
        except Exception as e:
            logger.error(f"Failed to perform health check: {e}")
            self._health = HealthState(
                is_healthy=False,
                last_checked=utc_now(),
                services=[ServiceStatus(
                    name="Health Check System",
                    configured=False,
                    connected=False,
                    required=True,
                    error=f"Health check failed: {e}",
                )],
            )
        return self._health

    async def initialize(self) -> None:
        """Run the first health check once per process."""
        if self._initialized:
            return
        logger.info("Initializing application health checks...")
        state = await self._perform_health_check()
        self._initialized = True
        if state.is_healthy:
            logger.info("All services are healthy")
        else:
            failing = [s.name for s in state.services if s.required and not (s.configured and s.connected)]
            logger.warning(f"Some services have issues: {failing}")

    async def force_health_check(self) -> HealthState:
        return await self._perform_health_check()

    def is_application_healthy(self) -> bool:
        return bool(self._health and self._health.is_healthy)

    def get_health_state(self) -> Optional[HealthState]:
        return self._health


status_service = StatusService()
