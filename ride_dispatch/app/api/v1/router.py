"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ride_dispatch.app.api.v1.endpoints import dispatch

router = APIRouter()

router.include_router(dispatch.router)
