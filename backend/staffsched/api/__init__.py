"""HTTP routers."""

from fastapi import APIRouter

from . import health, schedules

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(schedules.router)
