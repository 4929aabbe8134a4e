"""API routers."""
from tourism_director.routers.generation_router import router as generation_router
from tourism_director.routers.health_router import router as health_router
from tourism_director.routers.rebuild_router import router as rebuild_router

__all__ = [
    "generation_router",
    "health_router",
    "rebuild_router",
]
