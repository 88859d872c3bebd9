"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from app.api.accounting import router as accounting_router
from app.api.files import router as files_router
from app.api.health import router as health_router
from app.api.jobs import router as jobs_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(accounting_router)
api_router.include_router(files_router)
api_router.include_router(jobs_router)
