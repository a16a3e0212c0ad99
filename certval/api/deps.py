"""
FastAPI dependencies for API routes.

The coordinator is built once per process from settings; tests replace it
through app.dependency_overrides[get_coordinator].
"""

from functools import lru_cache

from certval.auth.dependencies import get_db, get_reviewer
from certval.config import settings
from certval.services.phoenix_client import PhoenixClient
from certval.validation.coordinator import DecisionConfig, DecisionCoordinator


@lru_cache(maxsize=1)
def get_coordinator() -> DecisionCoordinator:
    return DecisionCoordinator(
        phoenix=PhoenixClient.from_settings(settings),
        config=DecisionConfig.from_settings(settings),
    )


__all__ = ["get_db", "get_reviewer", "get_coordinator"]
