"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from proctor.api.v1 import attempts, health, live_test, sessions, users

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(attempts.router, prefix="/attempts", tags=["attempts"])
api_router.include_router(live_test.router, tags=["live-test"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
