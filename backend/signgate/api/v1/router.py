"""API v1 router aggregator.

All v1 endpoint routers are included here, mounted at /api/v1.
"""

from fastapi import APIRouter

from signgate.api.v1 import admin, signing_links

router = APIRouter()

router.include_router(signing_links.router, tags=["signing-links"])
router.include_router(admin.router, tags=["admin"])
