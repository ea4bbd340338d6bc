"""
St. Himark Damage Engine FastAPI Application

Main entry point for the REST API. Builds one DataStore per application,
preloads every dataset on startup and serves the reconciled damage views.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, get_settings
from damage_engine.api_routes import register_damage_routes
from damage_engine.data_acquisition.base_loader import DatasetLoadError
from damage_engine.store import DataStore
from damage_engine.views import DamageViews

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(store: Optional[DataStore] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        store: DataStore to serve; one reading the configured files is built
            when omitted
        app_settings: Settings override

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or settings
    store = store or DataStore(settings=app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await store.preload()
        except DatasetLoadError as e:
            # Routes answer 503 until the dataset loads
            logger.error(f"Preload failed: {e}")
        yield

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        description="Uncertainty-aware earthquake damage reconciliation for St. Himark",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.views = DamageViews(store, app_settings)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": app_settings.app_version,
        }

    register_damage_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
