"""Unit tests for audit logging middleware."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from src.api.middleware.audit import AuditMiddleware, _extract_resource
from src.permissions.overrides import UserOverrideStore
from src.permissions.session import SessionManager
from tests.unit.factories import make_user


class TestExtractResource:
    """Test resource extraction from URL paths."""

    def test_simple_path(self) -> None:
        resource_type, resource_id = _extract_resource("/access")
        assert resource_type == "access"
        assert resource_id is None

    def test_path_with_id(self) -> None:
        resource_type, resource_id = _extract_resource("/access/refresh")
        assert resource_type == "access"
        assert resource_id == "refresh"

    def test_nested_path(self) -> None:
        resource_type, resource_id = _extract_resource("/access/roles/teacher")
        assert resource_type == "access/roles"
        assert resource_id == "teacher"

    def test_permission_name_with_dot(self) -> None:
        resource_type, resource_id = _extract_resource("/access/users/7/overrides/grades.edit")
        assert resource_type == "access/users/7/overrides"
        assert resource_id == "grades.edit"

    def test_empty_path(self) -> None:
        resource_type, resource_id = _extract_resource("/")
        assert resource_type == ""
        assert resource_id is None


@pytest.fixture
def client(sessions: SessionManager, overrides: UserOverrideStore) -> TestClient:
    app = FastAPI()
    app.add_middleware(AuditMiddleware)
    app.state.access = SimpleNamespace(sessions=sessions)
    overrides.load("1", [], [])
    sessions.create(make_user("1", "admin"), "tok-admin")

    @app.put("/access/roles/{name}")
    async def update(name: str) -> dict:
        return {"status": "updated"}

    @app.put("/access/users/{user_id}/overrides/{permission}")
    async def unsaved(user_id: str, permission: str, request: Request) -> dict:
        request.state.audit_outcome = "sync_failed"
        return {"synced": False}

    @app.delete("/access/roles/{name}")
    async def delete(name: str) -> dict:
        raise HTTPException(status_code=409, detail="protected")

    @app.post("/access/check")
    async def check() -> dict:
        return {"allowed": True}

    return TestClient(app)


class TestAuditMiddleware:
    """Test which requests are audited."""

    def test_successful_mutation_logged(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="src.audit"):
            client.put("/access/roles/teacher", headers={"Authorization": "Bearer tok-admin"})
        records = [r for r in caplog.records if r.name == "src.audit"]
        assert len(records) == 1
        assert records[0].user_id == "1"  # type: ignore[attr-defined]
        assert records[0].resource == "access/roles:teacher"  # type: ignore[attr-defined]

    def test_failed_mutation_not_logged(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="src.audit"):
            client.delete("/access/roles/admin", headers={"Authorization": "Bearer tok-admin"})
        assert not [r for r in caplog.records if r.name == "src.audit"]

    def test_read_only_checks_skipped(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="src.audit"):
            client.post("/access/check")
        assert not [r for r in caplog.records if r.name == "src.audit"]

    def test_unsaved_change_logged_as_warning(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="src.audit"):
            resp = client.put(
                "/access/users/9/overrides/grades.view", headers={"Authorization": "Bearer tok-admin"}
            )
        assert resp.status_code == 200
        records = [r for r in caplog.records if r.name == "src.audit"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].outcome == "sync_failed"  # type: ignore[attr-defined]

    def test_saved_change_outcome_is_status(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="src.audit"):
            client.put("/access/roles/teacher", headers={"Authorization": "Bearer tok-admin"})
        record = next(r for r in caplog.records if r.name == "src.audit")
        assert record.levelno == logging.INFO
        assert record.outcome == "200"  # type: ignore[attr-defined]
