"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from courier_backend.app.api.v1.endpoints import maps, parcel_requests, parcels, tracking

router = APIRouter()

# Sender requests and admin review
router.include_router(parcel_requests.router)

# Parcel lifecycle
router.include_router(parcels.router)

# Public tracking (no auth)
router.include_router(tracking.router)

# Public map lookups (no auth)
router.include_router(maps.router)
