"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import map as map_routes
from services.map_controller import MapViewController


def create_app(controller: MapViewController | None = None) -> FastAPI:
    """Build the app around one map controller (a fresh default one if not given)."""
    app = FastAPI(
        title="POI Map Explorer API",
        description="Map camera shortcuts and region-scoped point-of-interest search",
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

    app.state.map_controller = controller or MapViewController()
    app.include_router(map_routes.router, prefix="/map", tags=["map"])

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "POI Map Explorer API"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
