"""Application wiring for the pass issuance service."""
from __future__ import annotations

from functools import lru_cache

from ..config import get_membership_config
from ..passes import PassService
from ..passes.repository import PostgresPassRepository


@lru_cache(maxsize=1)
def get_pass_service() -> PassService:
    config = get_membership_config()
    return PassService(
        repository=PostgresPassRepository(),
        validity_hours=config.pass_validity_hours,
    )


__all__ = ["get_pass_service"]
