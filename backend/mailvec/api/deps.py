"""Shared FastAPI dependencies."""

import asyncio
import contextlib
import logging
from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mailvec.config import settings
from mailvec.database import get_db
from mailvec.services.errors import MailSourceError
from mailvec.services.gmail import GmailMailSource, MailSource
from mailvec.services.repository import SqlRepository
from mailvec.services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)

# How often a long-running request checks whether its client went away
DISCONNECT_POLL_SECONDS = 0.5


async def get_repository(db: AsyncSession = Depends(get_db)) -> SqlRepository:
    return SqlRepository(db)


async def get_mail_source() -> AsyncIterator[MailSource]:
    """Gmail client for the configured account, closed after the request."""
    try:
        source = GmailMailSource(
            access_token=settings.gmail_access_token,
            user_id=settings.gmail_user_id,
            query=settings.sync_query,
        )
    except MailSourceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    try:
        yield source
    finally:
        await source.close()


def _build_orchestrator(request: Request, repository: SqlRepository, mail_source=None) -> SyncOrchestrator:
    state = request.app.state
    return SyncOrchestrator(
        repository=repository,
        mail_source=mail_source,
        embedding_provider=state.embedding_provider,
        mail_limiter=state.mail_limiter,
        embedding_limiter=state.embedding_limiter,
        batch_size=settings.sync_batch_size,
        acceptance_threshold=settings.acceptance_threshold,
        max_embedding_chars=settings.embedding_max_chars,
        lock=state.sync_lock,
    )


async def get_orchestrator(
    request: Request,
    repository: SqlRepository = Depends(get_repository),
) -> SyncOrchestrator:
    return _build_orchestrator(request, repository)


async def get_sync_orchestrator(
    request: Request,
    repository: SqlRepository = Depends(get_repository),
    mail_source: MailSource = Depends(get_mail_source),
) -> SyncOrchestrator:
    return _build_orchestrator(request, repository, mail_source)


@contextlib.asynccontextmanager
async def cancel_on_disconnect(
    request: Request, poll_interval: float = DISCONNECT_POLL_SECONDS
) -> AsyncIterator[asyncio.Event]:
    """Event set once the client disconnects or the server starts shutting down.

    Sync and backfill check it between messages, so an abandoned request
    releases the sync lock without waiting out the rest of its batch.
    """
    cancel = asyncio.Event()
    shutdown = request.app.state.shutdown_event

    async def watch():
        while True:
            if shutdown.is_set():
                logger.info("Server shutting down, cancelling request work")
                break
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling request work")
                break
            await asyncio.sleep(poll_interval)
        cancel.set()

    watcher = asyncio.create_task(watch())
    try:
        yield cancel
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
