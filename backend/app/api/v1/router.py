"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import numbers, wallet, admin

router = APIRouter()

# Number purchase and order lifecycle
router.include_router(numbers.router)

# Caller balance and ledger
router.include_router(wallet.router)

# Balance adjustments and ledger diagnostics
router.include_router(admin.router)
