"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .api import routes
from .config import get_settings
from . import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    logger.info("Starting Label Verification API...")
    settings = get_settings()

    extractor = routes.verification_service.extractor
    logger.info(f"Extraction provider: {extractor.name} (field decomposition via {settings.llm_provider})")

    # Only the local OCR engine needs warming; remote providers are ready when keyed
    if settings.extraction_provider == "easyocr":
        if extractor.initialize():
            logger.info("OCR engine initialized and ready")
        else:
            logger.warning("OCR engine failed to initialize - will retry on first request")
    elif not extractor.is_ready:
        logger.warning(f"Extraction provider '{extractor.name}' is missing its API key")

    logger.info(f"API ready - Version {__version__}")

    yield

    logger.info("Shutting down Label Verification API...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="""
## Alcohol Label Verification API

Checks that the text printed on an alcohol label matches the application data
filed for it, field by field.

### Fields
- **Brand Name**: case, punctuation and accent insensitive
- **Class/Type**: general-to-specific designations and listed equivalents
- **Alcohol Content**: within ±0.3% ABV
- **Net Contents**: same amount and unit
- **Government Warning**: exact text, "GOVERNMENT WARNING:" in capitals

### Quick Start
1. Use `/health` to check API status and the active extraction provider
2. Use `/extract` to see what the provider reads from a label
3. Use `/verify` or `/verify/base64` to verify a label against application data
4. Use `/verify/batch` with a CSV to verify several labels
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Label Verification API",
            "version": __version__,
            "docs": "/docs"
        }

    return app


# Create app instance
app = create_app()
