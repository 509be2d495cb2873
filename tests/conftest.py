"""Shared pytest fixtures for all test types."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.backend_client.client import SchoolAPIClient
from src.config import SchoolAPISettings, Settings
from src.permissions.catalog import CatalogStore
from src.permissions.engine import ResolutionEngine
from src.permissions.models import AuthenticatedUser, UserPermissions
from src.permissions.overrides import UserOverrideStore
from src.permissions.runtime import AccessRuntime, build_runtime
from src.permissions.session import SessionManager
from tests.unit.factories import make_permissions, make_roles, make_user, run_sync


@pytest.fixture
def school_client() -> AsyncMock:
    """SchoolAPIClient double answering with the test catalog."""
    client = AsyncMock(spec=SchoolAPIClient)
    client.get_roles.return_value = make_roles()
    client.get_permissions.return_value = make_permissions()
    client.get_user_permissions.return_value = UserPermissions()
    client.get_user_overrides.return_value = ([], [])
    client.save_user_overrides.return_value = None
    client.check_permission.return_value = True
    client.check_permissions.return_value = {}
    return client


@pytest.fixture
def catalog(school_client: AsyncMock) -> CatalogStore:
    """Catalog store with the test catalog already loaded."""
    store = CatalogStore(school_client)
    run_sync(store.load_catalog())
    return store


@pytest.fixture
def overrides(school_client: AsyncMock) -> UserOverrideStore:
    return UserOverrideStore(school_client)


@pytest.fixture
def engine(catalog: CatalogStore, overrides: UserOverrideStore) -> ResolutionEngine:
    return ResolutionEngine(catalog, overrides)


@pytest.fixture
def sessions(engine: ResolutionEngine, overrides: UserOverrideStore) -> SessionManager:
    return SessionManager(engine, overrides)


@pytest.fixture
def teacher() -> AuthenticatedUser:
    return make_user("7", "teacher")


@pytest.fixture
def runtime(school_client: AsyncMock) -> AccessRuntime:
    """Fully wired access runtime over the client double, catalog loaded."""
    settings = Settings(school_api=SchoolAPISettings(service_token="svc-token"))
    access = build_runtime(settings, client=school_client)
    run_sync(access.refresh.load_catalog())
    return access
