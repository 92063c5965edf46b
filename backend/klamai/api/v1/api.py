"""
Main API router aggregator
"""
from fastapi import APIRouter

from klamai.api.v1.endpoints import cases, files, health

api_router = APIRouter()

api_router.include_router(cases.router, prefix="/cases", tags=["Cases"])
api_router.include_router(files.router, prefix="/files", tags=["Files"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
