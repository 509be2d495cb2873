"""Wiring of the access core: one AccessRuntime per running process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.backend_client.client import SchoolAPIClient
from src.config import Settings
from src.permissions.catalog import CatalogStore
from src.permissions.engine import ResolutionEngine
from src.permissions.gate import AccessGate
from src.permissions.overrides import UserOverrideStore
from src.permissions.refresh import RefreshController
from src.permissions.session import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class AccessRuntime:
    client: SchoolAPIClient
    catalog: CatalogStore
    overrides: UserOverrideStore
    engine: ResolutionEngine
    gate: AccessGate
    sessions: SessionManager
    refresh: RefreshController
    loading_retry_after: int = 2

    async def start(self) -> None:
        """Open the client and schedule the first catalog load (non-blocking)."""
        await self.client.open()
        self.refresh.invalidate_roles()
        self.refresh.invalidate_permissions()

    async def stop(self) -> None:
        self.sessions.clear()
        await self.refresh.close()
        await self.client.close()


def build_runtime(settings: Settings, client: SchoolAPIClient | None = None) -> AccessRuntime:
    """Build the access core from settings."""
    if client is None:
        client = SchoolAPIClient(
            settings.school_api.url,
            service_token=settings.school_api.service_token,
            timeout=settings.school_api.timeout,
        )
    catalog = CatalogStore(client, ttl_seconds=settings.permissions.catalog_ttl_seconds)
    overrides = UserOverrideStore(client)
    engine = ResolutionEngine(catalog, overrides)
    sessions = SessionManager(engine, overrides)
    refresh = RefreshController(
        catalog, overrides, sessions, user_ttl_seconds=settings.permissions.user_ttl_seconds
    )
    logger.debug("Access runtime built for %s", settings.school_api.url)
    return AccessRuntime(
        client=client,
        catalog=catalog,
        overrides=overrides,
        engine=engine,
        gate=AccessGate(login_path=settings.server.login_path),
        sessions=sessions,
        refresh=refresh,
        loading_retry_after=settings.permissions.loading_retry_after,
    )
