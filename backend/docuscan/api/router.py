from fastapi import APIRouter

from . import endpoint_authorization

router = APIRouter(prefix="/api")

_routers = [
    endpoint_authorization.router,
]

for _router in _routers:
    router.include_router(_router)
