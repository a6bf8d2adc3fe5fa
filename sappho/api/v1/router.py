"""API v1 router aggregation"""
from fastapi import APIRouter

from sappho.api.v1 import backup

api_router = APIRouter()

api_router.include_router(backup.router)
