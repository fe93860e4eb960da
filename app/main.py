import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.features.analysis.services.run_manager import run_manager
from app.features.health.routes.health import router as health_router
from app.platform.exceptions import add_exception_handlers

# Configure logging to show INFO level messages
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Do not leave analysis tasks running past the event loop
    await run_manager.shutdown()


app = FastAPI(
    title="Affiliate Sitemap Analyzer API",
    description="Scores every page of a sitemap for affiliate monetization potential using AI providers",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "Affiliate Sitemap Analyzer API",
        "description": "AI-powered affiliate monetization analysis for every URL in a sitemap.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
