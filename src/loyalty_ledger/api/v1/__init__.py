from fastapi import APIRouter

from .endpoints import (
    customers,
    health,
    maintenance,
    pending_discounts,
    transactions,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(transactions.router)
router.include_router(customers.router)
router.include_router(pending_discounts.router)
router.include_router(maintenance.router)
