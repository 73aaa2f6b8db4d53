"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from dailyorder.app.api.v1.endpoints import orders, ledger

router = APIRouter()

# Order lifecycle endpoints
router.include_router(orders.router)

# Distributor ledger endpoints
router.include_router(ledger.router)
