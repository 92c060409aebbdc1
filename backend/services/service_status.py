"""
Shared status contract for external integrations.

Every integration (database, storage, email, billing, auth, invoice) reports
its configuration and connectivity through `check_configuration()` so the
system status page and the health cache can treat them uniformly.
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from pydantic import BaseModel


class ServiceConfigStatus(BaseModel):
    name: str
    configured: bool
    connected: Optional[bool] = None
    config_to_review: Optional[List[str]] = None
    error: Optional[str] = None
    description: Optional[str] = None


class ServiceStatus(ServiceConfigStatus):
    required: bool


class ConfigurableService(ABC):
    """Base for services that can be checked for configuration and connectivity."""

    @abstractmethod
    async def check_connection(self) -> bool:
        pass

    @abstractmethod
    async def check_configuration(self) -> ServiceConfigStatus:
        pass

    def is_required(self) -> bool:
        return False


def missing_settings(required: Dict[str, Any]) -> List[str]:
    """Names of the settings in `required` whose value is empty."""
    return [name for name, value in required.items() if not value]
