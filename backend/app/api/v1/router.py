from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.purchases import router as purchases_router
from backend.app.api.v1.endpoints.deliveries import router as deliveries_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(purchases_router, tags=["purchases"])
router.include_router(deliveries_router, tags=["deliveries"])
