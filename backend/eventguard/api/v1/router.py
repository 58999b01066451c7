"""API v1 router aggregator."""

from fastapi import APIRouter

from eventguard.api.v1 import auth, events, security

router = APIRouter(prefix="/api/v1")
router.include_router(auth.router)
router.include_router(events.router)
router.include_router(security.router)
