"""Tests for PermissionStore against an in-memory SQLite database."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from docuscan.crud.permission_store import PermissionStore
from docuscan.errors import ConflictError, NotFoundError
from docuscan.models.base import utcnow
from docuscan.models.permission_change_audit_log import ChangeType


async def register(store, method="GET", route="/api/documents", roles=("Reader",), **kwargs):
    kwargs.setdefault("endpoint_name", f"{method} {route}")
    kwargs.setdefault("created_by", "admin")
    return await store.create_endpoint(
        http_method=method, route=route, allowed_roles=list(roles), **kwargs
    )


class TestAllowedRoles:
    @pytest.mark.anyio
    async def test_returns_roles_of_active_endpoint(self, store):
        await register(store, roles=["Reader", "Publisher"])
        assert await store.get_allowed_roles("GET", "/api/documents") == {"Reader", "Publisher"}

    @pytest.mark.anyio
    async def test_unknown_endpoint_returns_empty_set(self, store):
        assert await store.get_allowed_roles("GET", "/api/unknown") == set()

    @pytest.mark.anyio
    async def test_endpoint_without_roles_returns_empty_set(self, store):
        await register(store, roles=[])
        assert await store.get_allowed_roles("GET", "/api/documents") == set()

    @pytest.mark.anyio
    async def test_inactive_endpoint_returns_empty_set(self, store):
        endpoint = await register(store, is_active=False)
        assert endpoint.is_active is False
        assert await store.get_allowed_roles("GET", "/api/documents") == set()

    @pytest.mark.anyio
    async def test_route_template_matching_is_exact(self, store):
        await register(store, route="/api/documents/{id}", roles=["Reader"])
        await register(store, route="/api/documents/42", roles=["Auditor"])

        assert await store.get_allowed_roles("GET", "/api/documents/{id}") == {"Reader"}
        assert await store.get_allowed_roles("GET", "/api/documents/42") == {"Auditor"}
        assert await store.get_allowed_roles("get", "/api/documents/{id}") == set()


class TestReplaceRolePermissions:
    @pytest.mark.anyio
    async def test_replacement_is_total(self, store):
        endpoint = await register(store, roles=["Reader", "Publisher"])

        await store.replace_role_permissions(endpoint.id, ["SuperUser"], "admin", "tighten")

        assert await store.get_allowed_roles("GET", "/api/documents") == {"SuperUser"}
        assert await store.get_endpoint_roles(endpoint.id) == ["SuperUser"]

    @pytest.mark.anyio
    async def test_kept_role_survives_replacement(self, store):
        endpoint = await register(store, roles=["Reader", "Publisher"])

        await store.replace_role_permissions(endpoint.id, ["Reader", "Auditor"], "admin")

        assert await store.get_endpoint_roles(endpoint.id) == ["Auditor", "Reader"]

    @pytest.mark.anyio
    async def test_writes_audit_row_with_sorted_snapshots(self, store):
        endpoint = await register(store, roles=["Reader", "Publisher"])

        await store.replace_role_permissions(endpoint.id, ["SuperUser", "Auditor"], "alice", "review")

        entries = await store.list_audit_log(endpoint_id=endpoint.id)
        latest = entries[0]
        assert latest.change_type == ChangeType.ROLE_PERMISSION_UPDATE
        assert latest.old_value == "Publisher, Reader"
        assert latest.new_value == "Auditor, SuperUser"
        assert latest.changed_by == "alice"
        assert latest.change_reason == "review"

    @pytest.mark.anyio
    async def test_sets_modified_timestamp(self, store):
        endpoint = await register(store)
        assert endpoint.modified_on is None

        await store.replace_role_permissions(endpoint.id, ["SuperUser"], "admin")

        refreshed = await store.get_endpoint(endpoint.id)
        assert refreshed.modified_on is not None

    @pytest.mark.anyio
    async def test_missing_endpoint_raises_not_found(self, store):
        with pytest.raises(NotFoundError, match="Endpoint with ID 999 not found"):
            await store.replace_role_permissions(999, ["Reader"], "admin")

        assert await store.list_audit_log() == []

    @pytest.mark.anyio
    async def test_failure_rolls_back_everything(self, store, session_factory):
        endpoint = await register(store, roles=["Reader", "Publisher"])
        endpoint_id = endpoint.id
        store._audit = MagicMock(side_effect=RuntimeError("audit write failed"))

        with pytest.raises(RuntimeError, match="audit write failed"):
            await store.replace_role_permissions(endpoint_id, ["SuperUser"], "admin")

        async with session_factory() as session:
            fresh = PermissionStore(session)
            assert await fresh.get_allowed_roles("GET", "/api/documents") == {"Reader", "Publisher"}
            entries = await fresh.list_audit_log(endpoint_id=endpoint_id)
            assert [entry.change_type for entry in entries] == [ChangeType.ENDPOINT_CREATED]


class TestEndpointLifecycle:
    @pytest.mark.anyio
    async def test_create_audits_initial_roles(self, store):
        endpoint = await register(store, roles=["Reader", "Publisher"])

        entries = await store.list_audit_log(endpoint_id=endpoint.id)
        assert len(entries) == 1
        assert entries[0].change_type == ChangeType.ENDPOINT_CREATED
        assert entries[0].old_value is None
        assert entries[0].new_value == "Publisher, Reader"
        assert entries[0].change_reason == "New endpoint registered"

    @pytest.mark.anyio
    async def test_duplicate_registration_is_conflict(self, store):
        await register(store)
        with pytest.raises(ConflictError):
            await register(store)

    @pytest.mark.anyio
    async def test_same_route_with_other_method_is_allowed(self, store):
        await register(store, method="GET")
        endpoint = await register(store, method="POST")
        assert endpoint.http_method == "POST"

    @pytest.mark.anyio
    async def test_metadata_update_audit_format(self, store):
        endpoint = await register(
            store, endpoint_name="List", description="All documents", category="Documents"
        )

        await store.update_endpoint_metadata(
            endpoint.id,
            endpoint_name="List Documents",
            description=None,
            category="Records",
            modified_by="alice",
        )

        entry = (await store.list_audit_log(endpoint_id=endpoint.id))[0]
        assert entry.change_type == ChangeType.ENDPOINT_METADATA_UPDATE
        assert entry.old_value == "Name: List, Desc: All documents, Cat: Documents"
        assert entry.new_value == "Name: List Documents, Desc: , Cat: Records"
        assert entry.change_reason == "Metadata update"

    @pytest.mark.anyio
    async def test_metadata_update_missing_endpoint(self, store):
        with pytest.raises(NotFoundError):
            await store.update_endpoint_metadata(
                5, endpoint_name="x", description=None, category=None, modified_by="alice"
            )

    @pytest.mark.anyio
    async def test_deactivate_and_reactivate(self, store):
        endpoint = await register(store, roles=["Reader"])

        await store.deactivate_endpoint(endpoint.id, "alice", "retired")
        assert await store.get_allowed_roles("GET", "/api/documents") == set()
        assert await store.list_endpoints() == []
        assert len(await store.list_endpoints(include_inactive=True)) == 1

        await store.reactivate_endpoint(endpoint.id, "alice", "back in use")
        assert await store.get_allowed_roles("GET", "/api/documents") == {"Reader"}

        deactivated, reactivated = reversed(
            (await store.list_audit_log(endpoint_id=endpoint.id))[:2]
        )
        assert deactivated.change_type == ChangeType.ENDPOINT_DEACTIVATED
        assert (deactivated.old_value, deactivated.new_value) == ("Active: true", "Active: false")
        assert deactivated.change_reason == "retired"
        assert reactivated.change_type == ChangeType.ENDPOINT_REACTIVATED
        assert (reactivated.old_value, reactivated.new_value) == ("Active: false", "Active: true")


class TestQueries:
    @pytest.mark.anyio
    async def test_list_endpoints_ordering(self, store):
        await register(store, method="POST", route="/api/documents", category="Documents")
        await register(store, method="GET", route="/api/documents", category="Documents")
        await register(store, method="GET", route="/api/audit", category="Admin")

        endpoints = await store.list_endpoints()

        assert [(e.category, e.route, e.http_method) for e in endpoints] == [
            ("Admin", "/api/audit", "GET"),
            ("Documents", "/api/documents", "GET"),
            ("Documents", "/api/documents", "POST"),
        ]

    @pytest.mark.anyio
    async def test_endpoint_lookups(self, store):
        endpoint = await register(store, route="/api/documents/{id}", roles=["Reader", "Auditor"])

        assert await store.endpoint_exists(endpoint.id) is True
        assert await store.endpoint_exists(endpoint.id + 100) is False
        by_route = await store.get_endpoint_by_route("GET", "/api/documents/{id}")
        assert by_route.id == endpoint.id
        assert by_route.allowed_roles == ["Auditor", "Reader"]
        assert await store.get_endpoint_by_route("GET", "/api/documents/1") is None

    @pytest.mark.anyio
    async def test_list_role_names_is_distinct_and_sorted(self, store):
        await register(store, route="/api/a", roles=["Reader", "SuperUser"])
        await register(store, route="/api/b", roles=["Publisher", "Reader"])

        assert await store.list_role_names() == ["Publisher", "Reader", "SuperUser"]

    @pytest.mark.anyio
    async def test_audit_log_is_newest_first_and_filterable(self, store):
        first = await register(store, route="/api/a")
        second = await register(store, route="/api/b")
        await store.replace_role_permissions(first.id, ["SuperUser"], "admin")

        entries = await store.list_audit_log()
        assert [entry.endpoint_id for entry in entries] == [first.id, second.id, first.id]

        only_second = await store.list_audit_log(endpoint_id=second.id)
        assert [entry.endpoint_id for entry in only_second] == [second.id]

        future = utcnow() + timedelta(days=1)
        assert await store.list_audit_log(from_date=future) == []
        assert len(await store.list_audit_log(to_date=future)) == 3

    @pytest.mark.anyio
    async def test_audit_entries_carry_endpoint(self, store):
        endpoint = await register(store, route="/api/documents/{id}", endpoint_name="Get Document")

        entry = (await store.list_audit_log(endpoint_id=endpoint.id))[0]

        assert entry.endpoint.route == "/api/documents/{id}"
        assert entry.endpoint.endpoint_name == "Get Document"
