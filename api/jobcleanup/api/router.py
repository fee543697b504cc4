from fastapi import APIRouter

from jobcleanup.api.routes import admin, cleanup, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(cleanup.router, prefix="/jobs", tags=["cron"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
