import fastapi

from .events import events_router
from .status import status_router

routers: list[fastapi.APIRouter] = [
    events_router,
    status_router,
]

__all__ = ['routers']
