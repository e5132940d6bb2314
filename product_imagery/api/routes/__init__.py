"""
API Router Module

All imagery endpoints are prefixed with /api/
"""

from fastapi import APIRouter

from product_imagery.api.routes.background import router as background_router
from product_imagery.api.routes.batch import router as batch_router
from product_imagery.api.routes.metrics import router as metrics_router
from product_imagery.api.routes.transforms import router as transforms_router
from product_imagery.api.routes.upload import router as upload_router

api_router = APIRouter(prefix="/api")

api_router.include_router(upload_router, tags=["upload"])
api_router.include_router(background_router, tags=["background removal"])
api_router.include_router(transforms_router, tags=["transforms"])
api_router.include_router(batch_router, tags=["batch"])
api_router.include_router(metrics_router, tags=["metrics"])
