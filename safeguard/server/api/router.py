"""
Main API router that aggregates all route modules.
"""

from fastapi import APIRouter

from .routes import credentials, storage


def get_api_router() -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(credentials.router)
    api_router.include_router(storage.router)
    return api_router
