from fastapi import APIRouter

from app.features.analysis.routes.analysis import router as analysis_router
from app.features.sitemap.routes.sitemap import router as sitemap_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(sitemap_router)
api_router.include_router(analysis_router)
