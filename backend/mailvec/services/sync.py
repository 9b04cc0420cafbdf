"""Sync orchestrator: pulls new Gmail messages, embeds them and auto-classifies them."""

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from mailvec.models import Classification
from mailvec.services.embeddings import EmbeddingProvider
from mailvec.services.errors import NotFound
from mailvec.services.gmail import MailSource
from mailvec.services.message_parser import parse_gmail_message, build_embedding_text
from mailvec.services.rate_limiter import RateLimiter
from mailvec.services.repository import Repository
from mailvec.services.scorer import CategoryMatch, LabeledEmbedding, find_best_category

logger = logging.getLogger(__name__)

MANUAL_CONFIDENCE = 1.0
# Confidence given to a non-manual classification created without a score
DEFAULT_CONFIDENCE = 0.5


@dataclass
class SyncSummary:
    """Aggregate counts for one sync run.

    ``synced`` counts every message that is stored after the run, whether it
    was already there or was created now; ``new`` counts only the latter.
    """
    total: int = 0
    synced: int = 0
    new: int = 0
    errors: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class SyncOrchestrator:
    """Runs sync, manual classification and embedding backfill for one mailbox.

    Messages are processed strictly one at a time. Both upstream services
    are rate limited, so every Gmail call waits on ``mail_limiter`` and every
    embedding call waits on ``embedding_limiter``. The limiters and ``lock``
    are meant to be shared between orchestrators of the same mailbox so that
    concurrent requests neither exceed the rate nor score against a stale
    labeled corpus.
    """

    def __init__(
        self,
        repository: Repository,
        mail_source: Optional[MailSource],
        embedding_provider: EmbeddingProvider,
        mail_limiter: Optional[RateLimiter] = None,
        embedding_limiter: Optional[RateLimiter] = None,
        batch_size: int = 10,
        acceptance_threshold: float = 0.5,
        max_embedding_chars: int = 8000,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.repository = repository
        self.mail_source = mail_source
        self.embedding_provider = embedding_provider
        self.mail_limiter = mail_limiter or RateLimiter(requests_per_second=10)
        self.embedding_limiter = embedding_limiter or RateLimiter(requests_per_second=5)
        self.batch_size = batch_size
        self.acceptance_threshold = acceptance_threshold
        self.max_embedding_chars = max_embedding_chars
        self._lock = lock or asyncio.Lock()

    async def sync(self, cancel_event: Optional[asyncio.Event] = None) -> SyncSummary:
        """Pull the newest inbox messages and store, embed and classify the new ones.

        A failing message is logged and counted in ``errors``; the batch
        carries on. Only failing to list the inbox raises. Setting
        ``cancel_event`` stops the run before the next message.
        """
        if self.mail_source is None:
            raise RuntimeError("sync requires a mail source")

        async with self._lock:
            await self.mail_limiter.acquire()
            message_ids = await self.mail_source.list_inbox_message_ids(self.batch_size)

            summary = SyncSummary(total=len(message_ids))
            logger.info(f"Syncing {len(message_ids)} inbox messages")

            for message_id in message_ids:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Sync cancelled before all messages were processed")
                    summary.cancelled = True
                    break

                try:
                    created = await self._sync_message(message_id)
                except Exception as e:
                    logger.error(f"Error processing email {message_id}: {e}")
                    summary.errors += 1
                    continue

                summary.synced += 1
                if created:
                    summary.new += 1

            logger.info(
                f"Sync complete: {summary.new} new, {summary.synced} synced, "
                f"{summary.errors} errors, {summary.total} total"
            )
            return summary

    async def _sync_message(self, message_id: str) -> bool:
        """Store one message. Returns False if it was already stored.

        Scoring happens before anything is written, and the email and its
        automatic classification are stored together, so a failure leaves
        no row behind and the message is retried on the next sync.
        """
        if await self.repository.find_email_by_external_id(message_id) is not None:
            return False

        await self.mail_limiter.acquire()
        raw = await self.mail_source.fetch_message(message_id)
        parsed = parse_gmail_message(raw)

        text = build_embedding_text(parsed.subject, parsed.body, self.max_embedding_chars)
        embedding = await self._embed(text)
        match = await self._auto_classify(message_id, embedding)

        await self.repository.create_email(
            gmail_id=parsed.gmail_id,
            subject=parsed.subject,
            from_address=parsed.from_address,
            to_address=parsed.to_address,
            body=parsed.body,
            snippet=parsed.snippet,
            received_at=parsed.received_at,
            embedding=embedding,
            classification=None if match is None else {
                "category_id": match.category_id,
                "confidence": match.confidence,
                "is_manual": False,
            },
        )
        return True

    async def _auto_classify(self, message_id: str, embedding: list[float]) -> Optional[CategoryMatch]:
        """Best category for a new message, or None if nothing clears the threshold."""
        # The corpus is re-read for every email so classifications made
        # earlier in the same batch count for later messages.
        corpus = await self.labeled_corpus()
        match = find_best_category(embedding, corpus)

        if match is None or match.confidence <= self.acceptance_threshold:
            logger.debug(f"Message {message_id} left unclassified (match={match})")
            return None

        logger.info(
            f"Auto-classified message {message_id} as category {match.category_id} "
            f"(confidence={match.confidence:.2f})"
        )
        return match

    async def labeled_corpus(self) -> list[LabeledEmbedding]:
        """Embeddings of every email that already has a classification."""
        corpus = []
        for email_obj in await self.repository.list_emails_with_embedding():
            classification = await self.repository.find_classification_by_email_id(email_obj.id)
            if classification is not None and email_obj.embedding:
                corpus.append(LabeledEmbedding(
                    embedding=email_obj.embedding,
                    category_id=classification.category_id,
                ))
        return corpus

    async def classify(self, email_id: int, category_id: int, is_manual: bool = True) -> Classification:
        """Create or replace the classification of an email.

        A manual classification always carries confidence 1.0, discarding
        any earlier automatic score.

        Raises:
            NotFound: if the email or the category does not exist.
        """
        async with self._lock:
            if await self.repository.get_email(email_id) is None:
                raise NotFound("email", email_id)
            if await self.repository.get_category(category_id) is None:
                raise NotFound("category", category_id)

            existing = await self.repository.find_classification_by_email_id(email_id)
            if existing is not None:
                confidence = MANUAL_CONFIDENCE if is_manual else existing.confidence
                return await self.repository.update_classification(
                    email_id,
                    category_id=category_id,
                    confidence=confidence,
                    is_manual=is_manual,
                )

            return await self.repository.create_classification(
                email_id=email_id,
                category_id=category_id,
                confidence=MANUAL_CONFIDENCE if is_manual else DEFAULT_CONFIDENCE,
                is_manual=is_manual,
            )

    async def recompute_embeddings(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        """Embed every stored email that has no embedding yet.

        Uses the same embedding rate limiter as sync. Returns the number of
        emails embedded.
        """
        async with self._lock:
            processed = 0
            for email_obj in await self.repository.list_emails_missing_embedding():
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Embedding backfill cancelled")
                    break

                text = build_embedding_text(
                    email_obj.subject,
                    email_obj.body or email_obj.snippet,
                    self.max_embedding_chars,
                )
                embedding = await self._embed(text)
                await self.repository.update_email(email_obj.id, embedding=embedding)
                processed += 1

            logger.info(f"Computed embeddings for {processed} emails")
            return processed

    async def _embed(self, text: str) -> list[float]:
        await self.embedding_limiter.acquire()
        return await self.embedding_provider.embed(text)
