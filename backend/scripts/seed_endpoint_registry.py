"""
Seed the endpoint registry with the endpoint authorization API itself.

Safe to run repeatedly: endpoints that already exist are left untouched,
including any role changes administrators made since.

Usage:
    python -m scripts.seed_endpoint_registry
"""
import asyncio
import os
import sys

# Add parent directory to path to import docuscan modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from docuscan.crud.permission_store import PermissionStore
from docuscan.database import AsyncSessionLocal

SEED_ACTOR = "system:seed"
SEED_REASON = "Initial endpoint registry seed"

API_PREFIX = "/api/endpoint-authorization"
CATEGORY = "Endpoint Authorization"

ADMIN_ROLES = ["SuperUser"]
APPLICATION_ROLES = ["Publisher", "Reader", "SuperUser"]

DEFAULT_ENDPOINTS = [
    {"http_method": "GET", "route": f"{API_PREFIX}/check", "endpoint_name": "Check Access",
     "description": "Check the caller's access to one endpoint", "roles": APPLICATION_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/endpoints", "endpoint_name": "List Endpoints",
     "description": "List registered endpoints with their roles", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/endpoints", "endpoint_name": "Create Endpoint",
     "description": "Register a new endpoint", "roles": ADMIN_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/endpoints/by-route", "endpoint_name": "Get Endpoint By Route",
     "description": "Look up an endpoint by method and route template", "roles": ADMIN_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}", "endpoint_name": "Get Endpoint",
     "description": "Get one registered endpoint", "roles": ADMIN_ROLES},
    {"http_method": "PUT", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}", "endpoint_name": "Update Endpoint",
     "description": "Update endpoint name, description and category", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}/deactivate", "endpoint_name": "Deactivate Endpoint",
     "description": "Deactivate an endpoint", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}/reactivate", "endpoint_name": "Reactivate Endpoint",
     "description": "Reactivate an endpoint", "roles": ADMIN_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}/roles", "endpoint_name": "Get Endpoint Roles",
     "description": "List roles granted on an endpoint", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/endpoints/{{endpoint_id}}/roles", "endpoint_name": "Update Endpoint Roles",
     "description": "Replace roles granted on an endpoint", "roles": ADMIN_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/roles", "endpoint_name": "List Roles",
     "description": "List role names in use", "roles": ADMIN_ROLES},
    {"http_method": "GET", "route": f"{API_PREFIX}/audit", "endpoint_name": "Permission Audit Log",
     "description": "Read the permission change audit log", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/cache/invalidate", "endpoint_name": "Invalidate Cache",
     "description": "Clear the authorization cache", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/validate", "endpoint_name": "Validate Permissions",
     "description": "Validate a role set without saving it", "roles": ADMIN_ROLES},
    {"http_method": "POST", "route": f"{API_PREFIX}/sync", "endpoint_name": "Sync Endpoints",
     "description": "Register application routes missing from the registry", "roles": ADMIN_ROLES},
]


async def seed_endpoint_registry():
    """Register the default endpoints that are not in the registry yet."""
    async with AsyncSessionLocal() as session:
        store = PermissionStore(session)

        print("Seeding endpoint registry...")
        created = 0
        for endpoint_data in DEFAULT_ENDPOINTS:
            method = endpoint_data["http_method"]
            route = endpoint_data["route"]

            existing = await store.get_endpoint_by_route(method, route)
            if existing:
                print(f"  {method} {route} already registered, skipping...")
                continue

            await store.create_endpoint(
                http_method=method,
                route=route,
                endpoint_name=endpoint_data["endpoint_name"],
                description=endpoint_data["description"],
                category=CATEGORY,
                allowed_roles=endpoint_data["roles"],
                created_by=SEED_ACTOR,
                reason=SEED_REASON,
            )
            created += 1
            print(f"  ✓ Registered {method} {route} -> {', '.join(endpoint_data['roles'])}")

        print(f"\n✅ Endpoint registry seeding completed: {created} endpoints registered")


if __name__ == "__main__":
    asyncio.run(seed_endpoint_registry())
