"""API route handlers for vidpress."""

from fastapi import APIRouter

from .status import router as status_router
from .submit import router as submit_router

# Combine all routers
api_router = APIRouter(prefix="/api")
api_router.include_router(submit_router, tags=["submit"])
api_router.include_router(status_router, tags=["status"])

__all__ = ["api_router"]
