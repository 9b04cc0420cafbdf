"""Tests for the HTTP API (ASGI in-process, SQLite in memory)."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import AsyncIterator

import httpx
import pytest
import pytest_asyncio

from mailvec.api.deps import cancel_on_disconnect, get_mail_source
from mailvec.database import get_db
from mailvec.main import app, init_state
from mailvec.services.rate_limiter import RateLimiter
from mailvec.services.sync import SyncOrchestrator
from tests.fakes import FakeEmbeddingProvider, FakeMailSource, make_gmail_message


@pytest.fixture
def mail_source() -> FakeMailSource:
    return FakeMailSource([
        make_gmail_message("g1", subject="Sprint planning", body="Agenda"),
        make_gmail_message("g2", subject="Sprint retro", body="Notes"),
    ])


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider(vectors={
        "Sprint planning": [1.0, 0.0, 0.0],
        "Sprint retro": [0.9, 0.1, 0.0],
    })


@pytest_asyncio.fixture
async def client(session_factory, mail_source, provider) -> AsyncIterator[httpx.AsyncClient]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_mail_source():
        yield mail_source

    init_state(app, embedding_provider=provider)
    app.state.mail_limiter = RateLimiter(requests_per_second=1000)
    app.state.embedding_limiter = RateLimiter(requests_per_second=1000)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mail_source] = override_get_mail_source

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


async def create_category(client: httpx.AsyncClient, name: str) -> dict:
    response = await client.post(
        "/api/categories/",
        json={"name": name, "description": None, "color": "#22c55e", "icon": "briefcase"},
    )
    assert response.status_code == 201
    return response.json()


class TestMeta:
    @pytest.mark.asyncio
    async def test_root_and_health(self, client: httpx.AsyncClient) -> None:
        assert (await client.get("/")).json()["status"] == "running"
        assert (await client.get("/health")).json()["status"] == "healthy"


class TestCategoriesApi:
    @pytest.mark.asyncio
    async def test_crud(self, client: httpx.AsyncClient) -> None:
        created = await create_category(client, "work")

        listed = (await client.get("/api/categories/")).json()
        assert [c["name"] for c in listed] == ["work"]

        patched = await client.patch(
            f"/api/categories/{created['id']}",
            json={"name": "jobs", "description": "Day job", "color": "#000000", "icon": "briefcase"},
        )
        assert patched.status_code == 200
        assert patched.json()["name"] == "jobs"

        assert (await client.delete(f"/api/categories/{created['id']}")).status_code == 204
        assert (await client.delete(f"/api/categories/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, client: httpx.AsyncClient) -> None:
        await create_category(client, "work")
        response = await client.post(
            "/api/categories/", json={"name": "work", "color": "#22c55e", "icon": "briefcase"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_color(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/categories/", json={"name": "work", "color": "green", "icon": "briefcase"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_missing(self, client: httpx.AsyncClient) -> None:
        response = await client.patch(
            "/api/categories/999", json={"name": "x", "color": "#000000", "icon": "x"}
        )
        assert response.status_code == 404


class TestSyncAndClassifyApi:
    @pytest.mark.asyncio
    async def test_sync_then_manual_then_auto(
        self, client: httpx.AsyncClient, mail_source: FakeMailSource
    ) -> None:
        work = await create_category(client, "work")

        # First sync: nothing labeled yet, so nothing is auto-classified
        first = await client.post("/api/emails/sync")
        assert first.status_code == 200
        assert first.json() == {
            "success": True, "total": 2, "synced": 2, "new": 2, "errors": 0, "cancelled": False,
        }

        emails = (await client.get("/api/emails/")).json()
        assert all(e["classification"] is None for e in emails)
        planning = next(e for e in emails if e["gmail_id"] == "g1")

        response = await client.post(
            f"/api/emails/{planning['id']}/classify",
            json={"category_id": work["id"], "is_manual": True},
        )
        assert response.json() == {"success": True}

        detail = (await client.get(f"/api/emails/{planning['id']}")).json()
        assert detail["classification"]["category_id"] == work["id"]
        assert detail["classification"]["confidence"] == 1.0
        assert detail["classification"]["is_manual"] is True

        # A new similar message arrives and is auto-classified
        mail_source.messages["g3"] = make_gmail_message("g3", subject="Sprint retro", body="Again")
        mail_source.order.insert(0, "g3")
        second = (await client.post("/api/emails/sync")).json()
        assert (second["total"], second["synced"], second["new"]) == (3, 3, 1)

        filtered = (await client.get("/api/emails/", params={"category_id": work["id"]})).json()
        assert {e["gmail_id"] for e in filtered} == {"g1", "g3"}
        auto = next(e for e in filtered if e["gmail_id"] == "g3")
        assert auto["classification"]["is_manual"] is False
        assert auto["classification"]["category"]["name"] == "work"

        stats = (await client.get("/api/stats")).json()
        assert stats["total_emails"] == 3
        assert stats["categorized_emails"] == 2

        category_stats = (await client.get("/api/categories/stats")).json()
        assert category_stats[0]["email_count"] == 2

    @pytest.mark.asyncio
    async def test_sync_reports_unreachable_mail_source(
        self, client: httpx.AsyncClient, mail_source: FakeMailSource
    ) -> None:
        mail_source.fail_listing = True
        response = await client.post("/api/emails/sync")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_classify_unknown_email(self, client: httpx.AsyncClient) -> None:
        work = await create_category(client, "work")
        response = await client.post(
            "/api/emails/999/classify", json={"category_id": work["id"], "is_manual": True}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_unknown_email(self, client: httpx.AsyncClient) -> None:
        assert (await client.get("/api/emails/999")).status_code == 404

    @pytest.mark.asyncio
    async def test_compute_embeddings_with_nothing_missing(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/emails/sync")
        response = await client.post("/api/emails/compute-embeddings")
        assert response.json() == {"success": True, "processed": 0}


class StubRequest:
    """Just enough of a Starlette request for the disconnect watcher."""

    def __init__(self) -> None:
        self.app = SimpleNamespace(state=SimpleNamespace(shutdown_event=asyncio.Event()))
        self.disconnected = False

    def disconnect(self) -> None:
        self.disconnected = True

    async def is_disconnected(self) -> bool:
        return self.disconnected


class TestCancelOnDisconnect:
    """Per-request cancellation of long-running sync and backfill."""

    @pytest.mark.asyncio
    async def test_set_when_client_disconnects(self) -> None:
        request = StubRequest()
        async with cancel_on_disconnect(request, poll_interval=0) as cancel:
            await asyncio.sleep(0)
            assert not cancel.is_set()
            request.disconnect()
            await asyncio.wait_for(cancel.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_set_on_shutdown(self) -> None:
        request = StubRequest()
        async with cancel_on_disconnect(request, poll_interval=0) as cancel:
            request.app.state.shutdown_event.set()
            await asyncio.wait_for(cancel.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_disconnect_stops_running_sync(self, repository) -> None:
        request = StubRequest()
        messages = [make_gmail_message(f"m{i}", subject=f"S{i}") for i in range(4)]
        source = FakeMailSource(messages)
        provider = FakeEmbeddingProvider(on_embed=lambda subject: request.disconnect())
        orchestrator = SyncOrchestrator(
            repository=repository,
            mail_source=source,
            embedding_provider=provider,
            mail_limiter=RateLimiter(requests_per_second=1000),
            embedding_limiter=RateLimiter(requests_per_second=1000),
        )

        async with cancel_on_disconnect(request, poll_interval=0) as cancel:
            summary = await orchestrator.sync(cancel_event=cancel)

        assert summary.cancelled is True
        assert summary.new < 4
        assert "m3" not in source.fetched
        # The lock is free again for the next request
        assert not orchestrator._lock.locked()
