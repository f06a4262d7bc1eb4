"""
Tests for EndpointManagementService.

Most tests run against a real SQLite-backed store and resolver so that
validation, audit and cache invalidation are checked together.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import APIRouter, FastAPI

from docuscan.errors import NotFoundError, StoreUnavailableError, ValidationError
from docuscan.models.permission_change_audit_log import ChangeType
from docuscan.services.endpoint_management import EndpointManagementService

DELETE_DOCUMENT = ("DELETE", "/api/documents/{id}")


@pytest.fixture
def service(store, resolver):
    return EndpointManagementService(store, resolver, timeout_seconds=5)


async def register(service, method, route, roles):
    return await service.create_endpoint(
        http_method=method,
        route=route,
        endpoint_name=f"{method} {route}",
        created_by="admin",
        allowed_roles=roles,
    )


class TestValidation:
    @pytest.mark.anyio
    async def test_collects_every_violation(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])

        errors = await service.validate_permission_change(
            endpoint.id, ["Reader", "Reader", "", "x" * 51]
        )

        assert "Role names cannot be empty or whitespace" in errors
        assert f"Role name '{'x' * 51}' exceeds maximum length of 50 characters" in errors
        assert "Duplicate roles detected: Reader" in errors
        assert len(errors) >= 3

    @pytest.mark.anyio
    async def test_empty_role_set_is_rejected(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])

        errors = await service.validate_permission_change(endpoint.id, [])

        assert errors == ["At least one role must be assigned to the endpoint"]

    @pytest.mark.anyio
    async def test_whitespace_role_is_rejected(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])

        errors = await service.validate_permission_change(endpoint.id, ["   "])

        assert errors == ["Role names cannot be empty or whitespace"]

    @pytest.mark.anyio
    async def test_fifty_characters_is_allowed(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        assert await service.validate_permission_change(endpoint.id, ["x" * 50]) == []

    @pytest.mark.anyio
    async def test_missing_endpoint_is_reported(self, service):
        errors = await service.validate_permission_change(404, ["Reader"])
        assert errors == ["Endpoint with ID 404 does not exist"]

    @pytest.mark.anyio
    async def test_duplicates_are_case_sensitive(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        assert await service.validate_permission_change(endpoint.id, ["Reader", "reader"]) == []


class TestUpdateRoles:
    @pytest.mark.anyio
    async def test_replacement_is_total(self, service, resolver):
        endpoint = await register(service, "GET", "/api/documents", ["Reader", "Publisher"])

        await service.update_roles(endpoint.id, ["SuperUser"], changed_by="alice")

        assert await resolver.get_allowed_roles("GET", "/api/documents") == {"SuperUser"}

    @pytest.mark.anyio
    async def test_next_check_sees_new_roles(self, service, resolver):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        assert await resolver.check_access("GET", "/api/documents", {"Publisher"}) is False

        await service.update_roles(endpoint.id, ["Publisher"], changed_by="alice")

        assert await resolver.check_access("GET", "/api/documents", {"Publisher"}) is True
        assert await resolver.check_access("GET", "/api/documents", {"Reader"}) is False

    @pytest.mark.anyio
    async def test_validation_failure_changes_nothing(self, service, resolver):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        await resolver.get_allowed_roles("GET", "/api/documents")
        generation = resolver.cache.generation

        with pytest.raises(ValidationError) as exc:
            await service.update_roles(endpoint.id, ["Reader", "Reader", ""], changed_by="alice")

        assert "Duplicate roles detected: Reader" in exc.value.errors
        assert "Role names cannot be empty or whitespace" in exc.value.errors
        assert resolver.cache.generation == generation
        assert await service.get_endpoint_roles(endpoint.id) == ["Reader"]
        assert len(await service.get_audit_log(endpoint_id=endpoint.id)) == 1

    @pytest.mark.anyio
    async def test_missing_endpoint_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.update_roles(999, ["Reader"], changed_by="alice")

    @pytest.mark.anyio
    async def test_each_update_appends_one_audit_row(self, service):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        role_sets = [["Publisher"], ["Publisher", "Reader"], ["SuperUser"]]

        for roles in role_sets:
            await service.update_roles(endpoint.id, roles, changed_by="alice", reason="step")

        entries = list(reversed(await service.get_audit_log(endpoint_id=endpoint.id)))
        updates = [e for e in entries if e.change_type == ChangeType.ROLE_PERMISSION_UPDATE]

        assert len(updates) == len(role_sets)
        assert [(e.old_value, e.new_value) for e in updates] == [
            ("Reader", "Publisher"),
            ("Publisher", "Publisher, Reader"),
            ("Publisher, Reader", "SuperUser"),
        ]

    @pytest.mark.anyio
    async def test_delete_document_scenario(self, service, resolver):
        endpoint = await register(service, *DELETE_DOCUMENT, ["SuperUser"])

        assert await resolver.check_access(*DELETE_DOCUMENT, {"Reader"}) is False
        assert await resolver.check_access(*DELETE_DOCUMENT, {"SuperUser"}) is True

        with pytest.raises(ValidationError) as exc:
            await service.update_roles(endpoint.id, [], changed_by="alice")
        assert exc.value.errors == ["At least one role must be assigned to the endpoint"]

        assert await resolver.check_access(*DELETE_DOCUMENT, {"Reader"}) is False
        assert await resolver.check_access(*DELETE_DOCUMENT, {"SuperUser"}) is True


class TestOrderingAndFailures:
    def _service_with_mocks(self, calls):
        store = MagicMock()
        store.endpoint_exists = AsyncMock(return_value=True)

        async def replace(*args, **kwargs):
            calls.append("commit")

        store.replace_role_permissions = replace
        resolver = MagicMock()
        resolver.invalidate_cache = MagicMock(side_effect=lambda: calls.append("invalidate"))
        return EndpointManagementService(store, resolver, timeout_seconds=0.05), resolver

    @pytest.mark.anyio
    async def test_cache_is_cleared_after_commit(self):
        calls = []
        service, _ = self._service_with_mocks(calls)

        await service.update_roles(1, ["Reader"], changed_by="alice")

        assert calls == ["commit", "invalidate"]

    @pytest.mark.anyio
    async def test_write_timeout_is_store_unavailable(self):
        calls = []
        service, resolver = self._service_with_mocks(calls)

        async def slow_replace(*args, **kwargs):
            await asyncio.sleep(1)

        service.store.replace_role_permissions = slow_replace

        with pytest.raises(StoreUnavailableError):
            await service.update_roles(1, ["Reader"], changed_by="alice")

        resolver.invalidate_cache.assert_not_called()

    @pytest.mark.anyio
    async def test_write_database_error_is_store_unavailable(self):
        calls = []
        service, resolver = self._service_with_mocks(calls)
        service.store.replace_role_permissions = AsyncMock(side_effect=OSError("connection reset"))

        with pytest.raises(StoreUnavailableError) as exc:
            await service.update_roles(1, ["Reader"], changed_by="alice")

        assert exc.value.status_code == 503
        resolver.invalidate_cache.assert_not_called()


class TestCreateEndpoint:
    @pytest.mark.anyio
    async def test_invalid_initial_roles_are_rejected_together(self, service, resolver):
        generation = resolver.cache.generation

        with pytest.raises(ValidationError) as exc:
            await register(service, "GET", "/api/x", ["Reader", "Reader", "", "   ", "x" * 60])

        assert exc.value.errors == [
            "Role names cannot be empty or whitespace",
            f"Role name '{'x' * 60}' exceeds maximum length of 50 characters",
            "Duplicate roles detected: Reader",
        ]
        assert await service.store.get_endpoint_by_route("GET", "/api/x") is None
        assert await service.get_audit_log() == []
        assert resolver.cache.generation == generation

    @pytest.mark.anyio
    async def test_endpoint_without_roles_is_registered_closed(self, service, resolver):
        endpoint = await register(service, "GET", "/api/x", [])

        assert endpoint.allowed_roles == []
        assert await resolver.check_access("GET", "/api/x", {"SuperUser"}) is False


class TestLifecycle:
    @pytest.mark.anyio
    async def test_every_mutation_clears_cache(self, service, resolver):
        generation = resolver.cache.generation

        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        await service.update_endpoint_metadata(
            endpoint.id,
            endpoint_name="List Documents",
            description=None,
            category="Documents",
            modified_by="alice",
        )
        await service.deactivate_endpoint(endpoint.id, "alice", "retired")
        await service.reactivate_endpoint(endpoint.id, "alice", "restored")

        assert resolver.cache.generation == generation + 4

    @pytest.mark.anyio
    async def test_deactivation_is_visible_to_next_check(self, service, resolver):
        endpoint = await register(service, "GET", "/api/documents", ["Reader"])
        assert await resolver.check_access("GET", "/api/documents", {"Reader"}) is True

        await service.deactivate_endpoint(endpoint.id, "alice")

        assert await resolver.check_access("GET", "/api/documents", {"Reader"}) is False

    @pytest.mark.anyio
    async def test_get_endpoint_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get_endpoint(12)
        with pytest.raises(NotFoundError):
            await service.get_endpoint_roles(12)
        with pytest.raises(NotFoundError):
            await service.get_endpoint_by_route("GET", "/api/missing")

    @pytest.mark.anyio
    async def test_available_roles(self, service):
        await register(service, "GET", "/api/a", ["Reader", "SuperUser"])
        await register(service, "GET", "/api/b", ["Reader"])

        assert await service.get_available_roles() == ["Reader", "SuperUser"]


class TestSyncFromRoutes:
    def _app(self) -> FastAPI:
        app = FastAPI()
        documents = APIRouter(prefix="/api/documents", tags=["Documents"])

        @documents.get("/{id}")
        async def get_document(id: int):
            return {}

        @documents.delete("/{id}")
        async def delete_document(id: int):
            return {}

        app.include_router(documents)

        @app.get("/status")
        async def status_page():
            return {}

        return app

    @pytest.mark.anyio
    async def test_registers_missing_api_routes_closed(self, service, resolver):
        created = await service.sync_endpoints_from_routes(self._app(), changed_by="alice")

        assert sorted((e.http_method, e.route) for e in created) == [
            ("DELETE", "/api/documents/{id}"),
            ("GET", "/api/documents/{id}"),
        ]
        assert all(e.category == "Documents" for e in created)
        assert {e.endpoint_name for e in created} == {"get_document", "delete_document"}
        assert await resolver.check_access("GET", "/api/documents/{id}", {"SuperUser"}) is False

        entries = await service.get_audit_log()
        assert {e.change_reason for e in entries} == {"Discovered from application routes"}

    @pytest.mark.anyio
    async def test_existing_routes_are_left_alone(self, service):
        await register(service, "GET", "/api/documents/{id}", ["Reader"])

        created = await service.sync_endpoints_from_routes(self._app(), changed_by="alice")
        again = await service.sync_endpoints_from_routes(self._app(), changed_by="alice")

        assert [(e.http_method, e.route) for e in created] == [("DELETE", "/api/documents/{id}")]
        assert again == []
        existing = await service.get_endpoint_by_route("GET", "/api/documents/{id}")
        assert existing.allowed_roles == ["Reader"]
