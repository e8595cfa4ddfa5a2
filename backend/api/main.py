"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import places, route
from db import init_db
from domain.models import IngestMode
from services.planner import get_default_planner
from settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Route Planner API",
    description="API for planning multi-stop field routes",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(places.router, prefix="/places", tags=["places"])
app.include_router(route.router, prefix="/route", tags=["route"])


async def bootstrap_places() -> int:
    """Seed an empty session from BOOTSTRAP_ADDRESSES_PATH, if configured."""
    path = settings.BOOTSTRAP_ADDRESSES_PATH
    if not path:
        return 0
    planner = get_default_planner()
    if planner.list_places():
        return 0
    bootstrap_file = Path(path)
    if not bootstrap_file.exists():
        logger.warning("Bootstrap address file %s does not exist", bootstrap_file)
        return 0
    added = await planner.ingest_places(bootstrap_file.read_text(encoding="utf-8"), IngestMode.REPLACE)
    logger.info("Bootstrapped %d place(s) from %s", len(added), bootstrap_file)
    return len(added)


@app.on_event("startup")
async def startup_event():
    """Initialize database tables and seed the session on startup."""
    init_db()
    await bootstrap_places()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Route Planner API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    planner = get_default_planner()
    return {
        "status": "healthy",
        "places": len(planner.list_places()),
        "route": len(planner.route_ids()),
        "optimization": planner.engine.state.value,
    }
