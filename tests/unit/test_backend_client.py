"""Unit tests for the school backend client."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from aiobreaker import CircuitBreaker, CircuitBreakerError

from src.backend_client.client import SchoolAPIClient, SchoolAPIError, _parse_list
from src.permissions.models import Role


@pytest.fixture(autouse=True)
def _fresh_breaker() -> Iterator[None]:
    """Isolate tests from the module-level circuit breaker state."""
    breaker = CircuitBreaker(fail_max=5, timeout_duration=timedelta(seconds=30))
    with patch("src.backend_client.client._school_breaker", breaker):
        yield


@pytest.fixture
def client() -> SchoolAPIClient:
    client = SchoolAPIClient("http://school.test/api/", service_token="svc-token")
    client._session = AsyncMock()  # marks the client as opened
    return client


class TestSchoolAPIError:
    """Test SchoolAPIError."""

    def test_error_message(self) -> None:
        err = SchoolAPIError(404, "Not found")
        assert err.status == 404
        assert "404" in str(err)
        assert "Not found" in str(err)


class TestUnwrap:
    """Test the {success, data} envelope handling."""

    def test_unwraps_data(self) -> None:
        assert SchoolAPIClient._unwrap({"success": True, "data": [1, 2]}) == [1, 2]

    def test_passes_through_bare_body(self) -> None:
        assert SchoolAPIClient._unwrap([{"name": "admin"}]) == [{"name": "admin"}]

    def test_unsuccessful_envelope_raises(self) -> None:
        with pytest.raises(SchoolAPIError, match="Role not found"):
            SchoolAPIClient._unwrap({"success": False, "message": "Role not found"})


class TestParseList:
    def test_parses_records(self) -> None:
        roles = _parse_list(Role, [{"id": 1, "name": "teacher", "permissions": [{"name": "a.b"}]}])
        assert roles[0].permissions == ["a.b"]

    def test_non_list_rejected(self) -> None:
        with pytest.raises(SchoolAPIError) as exc_info:
            _parse_list(Role, {"name": "teacher"})
        assert exc_info.value.status == 502

    def test_malformed_record_rejected(self) -> None:
        with pytest.raises(SchoolAPIError) as exc_info:
            _parse_list(Role, [{"id": 1}])
        assert exc_info.value.status == 502


class TestCatalogEndpoints:
    """Test catalog calls and payload parsing."""

    @pytest.mark.asyncio
    async def test_get_roles(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": [{"id": 1, "name": "admin", "permissions": ["users.view"]}]}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload) as req:
            roles = await client.get_roles()
        assert roles[0].name == "admin"
        method, url, _request_id = req.call_args.args
        assert method == "GET"
        assert url == "http://school.test/api/v1/roles-permissions/roles"
        assert req.call_args.kwargs["token"] == "svc-token"

    @pytest.mark.asyncio
    async def test_get_permissions_flattens_groups(self, client: SchoolAPIClient) -> None:
        payload = {
            "success": True,
            "data": {
                "grades": [{"id": 1, "name": "grades.view"}],
                "users": [{"id": 2, "name": "users.view"}, {"id": 3, "name": "users.edit"}],
            },
        }
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload):
            perms = await client.get_permissions()
        assert [p.name for p in perms] == ["grades.view", "users.view", "users.edit"]

    @pytest.mark.asyncio
    async def test_get_user_permissions_uses_user_token(self, client: SchoolAPIClient) -> None:
        payload = {
            "success": True,
            "data": {
                "user_id": 7,
                "roles": [{"id": 2, "name": "teacher"}],
                "permissions": [{"name": "reports.view"}],
                "denied_permissions": ["grades.edit"],
            },
        }
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload) as req:
            result = await client.get_user_permissions("user-token")
        assert req.call_args.kwargs["token"] == "user-token"
        assert result.role_names == ["teacher"]
        assert result.custom_names == ["reports.view"]
        assert result.denied_permissions == ["grades.edit"]

    @pytest.mark.asyncio
    async def test_check_permission(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": {"has_permission": True}}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload) as req:
            assert await client.check_permission("grades.view", "user-token")
        assert req.call_args.kwargs["json_data"] == {"permission": "grades.view"}

    @pytest.mark.asyncio
    async def test_check_permissions_maps_each_name(self, client: SchoolAPIClient) -> None:
        async def _check(permission: str, token: str) -> bool:
            return permission == "grades.view"

        with patch.object(client, "check_permission", side_effect=_check) as check:
            result = await client.check_permissions(["grades.view", "users.delete"], "user-token")
        assert result == {"grades.view": True, "users.delete": False}
        assert check.call_count == 2

    @pytest.mark.asyncio
    async def test_check_permissions_failure_raises(self, client: SchoolAPIClient) -> None:
        with patch.object(
            client, "check_permission", new_callable=AsyncMock, side_effect=SchoolAPIError(503, "down")
        ):
            with pytest.raises(SchoolAPIError):
                await client.check_permissions(["grades.view", "users.delete"], "user-token")


class TestAdministration:
    @pytest.mark.asyncio
    async def test_get_user_overrides(self, client: SchoolAPIClient) -> None:
        payload = {
            "success": True,
            "data": {"custom_permissions": ["reports.view"], "denied_permissions": ["grades.view"]},
        }
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload) as req:
            custom, denied = await client.get_user_overrides("9", token="admin-token")
        method, url, _ = req.call_args.args
        assert method == "GET"
        assert url.endswith("/v1/roles-permissions/users/9/overrides")
        assert req.call_args.kwargs["token"] == "admin-token"
        assert custom == ["reports.view"]
        assert denied == ["grades.view"]

    @pytest.mark.asyncio
    async def test_get_user_overrides_empty_lists(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": {"custom_permissions": None}}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload):
            assert await client.get_user_overrides("9") == ([], [])

    @pytest.mark.asyncio
    async def test_get_user_overrides_malformed(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": {"custom_permissions": "reports.view"}}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload):
            with pytest.raises(SchoolAPIError) as exc_info:
                await client.get_user_overrides("9")
        assert exc_info.value.status == 502

    @pytest.mark.asyncio
    async def test_save_user_overrides(self, client: SchoolAPIClient) -> None:
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=None) as req:
            await client.save_user_overrides("7", ["a.b"], ["c.d"], token="admin-token")
        method, url, _ = req.call_args.args
        assert method == "PUT"
        assert url.endswith("/v1/roles-permissions/users/7/overrides")
        assert req.call_args.kwargs["json_data"] == {
            "custom_permissions": ["a.b"],
            "denied_permissions": ["c.d"],
        }

    @pytest.mark.asyncio
    async def test_delete_role(self, client: SchoolAPIClient) -> None:
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=None) as req:
            await client.delete_role(4)
        method, url, _ = req.call_args.args
        assert method == "DELETE"
        assert url.endswith("/v1/roles-permissions/roles/4")


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_returns_user_and_token(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": {"user": {"id": 1, "role": "admin"}, "token": "t"}}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload):
            data = await client.login("admin@school.test", "password")
        assert data["token"] == "t"

    @pytest.mark.asyncio
    async def test_login_malformed(self, client: SchoolAPIClient) -> None:
        payload = {"success": True, "data": {"user": {"id": 1}}}
        with patch.object(client, "_request_with_retry", new_callable=AsyncMock, return_value=payload):
            with pytest.raises(SchoolAPIError) as exc_info:
                await client.login("admin@school.test", "password")
        assert exc_info.value.status == 502


class TestRetryAndBreaker:
    """Test retry on 429/503 and circuit breaker mapping."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, client: SchoolAPIClient) -> None:
        do_request = AsyncMock(side_effect=[SchoolAPIError(503, "busy"), {"success": True, "data": []}])
        with (
            patch.object(client, "_do_request", do_request),
            patch("src.backend_client.client.asyncio.sleep", new_callable=AsyncMock) as sleep,
        ):
            assert await client.get_roles() == []
        assert do_request.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client: SchoolAPIClient) -> None:
        do_request = AsyncMock(side_effect=SchoolAPIError(429, "slow down"))
        with (
            patch.object(client, "_do_request", do_request),
            patch("src.backend_client.client.asyncio.sleep", new_callable=AsyncMock),
        ):
            with pytest.raises(SchoolAPIError) as exc_info:
                await client.get_roles()
        assert exc_info.value.status == 429
        assert do_request.await_count == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, client: SchoolAPIClient) -> None:
        do_request = AsyncMock(side_effect=SchoolAPIError(404, "missing"))
        with patch.object(client, "_do_request", do_request):
            with pytest.raises(SchoolAPIError):
                await client.get_roles()
        assert do_request.await_count == 1

    @pytest.mark.asyncio
    async def test_open_breaker_maps_to_503(self, client: SchoolAPIClient) -> None:
        breaker = AsyncMock()
        breaker.call_async.side_effect = CircuitBreakerError(
            "Circuit breaker is open", reopen_time=datetime.now(UTC)
        )
        with patch("src.backend_client.client._school_breaker", breaker):
            with pytest.raises(SchoolAPIError) as exc_info:
                await client.get_roles()
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_not_opened(self) -> None:
        with pytest.raises(RuntimeError, match="not opened"):
            await SchoolAPIClient("http://school.test/api").get_roles()
