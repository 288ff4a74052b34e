from fastapi import APIRouter

from takeoff.api.routes import health, pipeline

api_router = APIRouter()

api_router.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])
api_router.include_router(health.router, prefix="", tags=["Health"])
