"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from glassbox_backend.app.api.v1.endpoints import (
    fee_schemas, partner_fees, revenue, scoped_revenue
)

router = APIRouter()

# Admin - fee schemas
router.include_router(fee_schemas.router)
router.include_router(partner_fees.router)

# Admin - settlement and reports
router.include_router(revenue.router)

# Merchant / Partner scoped views
router.include_router(scoped_revenue.merchant_router)
router.include_router(scoped_revenue.partner_router)
