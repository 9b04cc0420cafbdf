"""Email Vector Classifier: FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailvec.config import settings
from mailvec.database import init_db
from mailvec.api import categories, emails, stats
from mailvec.services.embeddings import EmbeddingProvider, create_embedding_provider
from mailvec.services.rate_limiter import RateLimiter

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("email-vector-classifier")


def init_state(app: FastAPI, embedding_provider: Optional[EmbeddingProvider] = None):
    """Attach the process-wide collaborators shared by all requests."""
    app.state.embedding_provider = embedding_provider or create_embedding_provider(settings)
    app.state.mail_limiter = RateLimiter(requests_per_second=settings.gmail_requests_per_second)
    app.state.embedding_limiter = RateLimiter(requests_per_second=settings.embedding_requests_per_second)
    app.state.sync_lock = asyncio.Lock()
    app.state.shutdown_event = asyncio.Event()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("=" * 60)
    logger.info("Email Vector Classifier starting up")
    logger.info(f"Database: {settings.database_url.split('@')[-1]}")
    logger.info(f"Embedding provider: {settings.embedding_provider}")
    logger.info(f"Sync batch size: {settings.sync_batch_size}")
    logger.info(f"Acceptance threshold: {settings.acceptance_threshold}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    init_state(app)

    yield

    # Running sync/backfill batches stop before their next message
    logger.info("Shutting down...")
    app.state.shutdown_event.set()
    await app.state.embedding_provider.close()
    logger.info("Shutdown complete")


# Create app
app = FastAPI(
    title="Email Vector Classifier",
    description="Sorts Gmail messages into user categories by embedding similarity",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(emails.router)
app.include_router(categories.router)
app.include_router(stats.router)


@app.get("/")
async def root():
    """Root endpoint: basic info."""
    return {
        "app": "Email Vector Classifier",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "gmail_configured": bool(settings.gmail_access_token),
        "embedding_provider": settings.embedding_provider,
    }
