"""Shared fixtures: fake workers, fake feed and a fully wired RenderService."""
from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
from PIL import Image

from backend.app.renders.cache import ArtifactCache
from backend.app.renders.feed import FeedClient
from backend.app.renders.registry import WorkerRegistry, WorkersFileIO
from backend.app.renders.service import RenderService
from backend.app.renders.worker_client import WorkerClient

FEED_URL = "http://feed.test/tradeads/v1/getrecentads"


def png_bytes(color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color=color).save(buf, format="PNG")
    return buf.getvalue()


def trade_ad(ad_id: int) -> list:
    return [ad_id, 1700000000, 42, "seller", {"items": [1]}, {"tags": ["any"]}]


# ---------------------------------------------------------------------------
# Fake workers
# ---------------------------------------------------------------------------

class WorkerFarm:
    """
    Fake rendering workers keyed by host name.

    Render behaviors: "ok", "garbage" (200 with a non-image body),
    "timeout", "refused", "overflow" (a non-httpx error from the socket
    layer), or an int HTTP status.
    Health behaviors: a number (reported ramUsage), "no-ram", "timeout",
    "overflow", or an int HTTP status wrapped in a tuple, e.g. (500,).
    """

    def __init__(self) -> None:
        self.render: Dict[str, Any] = {}
        self.health: Dict[str, Any] = {}
        self.render_calls: List[str] = []
        self.payloads: List[Any] = []
        self.health_calls: List[str] = []

    def endpoint(self, host: str) -> str:
        return f"http://{host}"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if request.url.path == "/generate":
            self.render_calls.append(host)
            self.payloads.append(json.loads(request.content)["tradeData"])
            behavior = self.render.get(host, "ok")
            if behavior == "ok":
                return httpx.Response(200, content=png_bytes(), headers={"Content-Type": "image/png"})
            if behavior == "garbage":
                return httpx.Response(200, content=b"definitely not a png")
            if behavior == "timeout":
                raise httpx.ReadTimeout("timed out", request=request)
            if behavior == "refused":
                raise httpx.ConnectError("connection refused", request=request)
            if behavior == "overflow":
                raise OverflowError("connect(): port must be 0-65535.")
            return httpx.Response(int(behavior), content=b"")

        if request.url.path == "/health":
            self.health_calls.append(host)
            behavior = self.health.get(host, 100)
            if behavior == "timeout":
                raise httpx.ConnectTimeout("timed out", request=request)
            if behavior == "overflow":
                raise OverflowError("connect(): port must be 0-65535.")
            if behavior == "no-ram":
                return httpx.Response(200, json={"status": "ok"})
            if isinstance(behavior, tuple):
                return httpx.Response(behavior[0], json={"error": "nope"})
            return httpx.Response(200, json={"status": "ok", "ramUsage": behavior})

        return httpx.Response(404)

    def client(self) -> WorkerClient:
        return WorkerClient(
            httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            render_timeout=1.0,
            health_timeout=1.0,
        )


# ---------------------------------------------------------------------------
# Fake feed
# ---------------------------------------------------------------------------

class FakeFeed:
    """Serves a queue of feed bodies; the last one repeats."""

    def __init__(self) -> None:
        self.bodies: List[Any] = []
        self.requests: List[httpx.Request] = []

    def serve(self, *bodies: Any) -> None:
        self.bodies.extend(bodies)

    def serve_ids(self, *ids: int) -> None:
        self.serve({"success": True, "trade_ad_count": len(ids), "trade_ads": [trade_ad(i) for i in ids]})

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.bodies.pop(0) if len(self.bodies) > 1 else self.bodies[0]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    def client(self) -> FeedClient:
        return FeedClient(
            FEED_URL,
            user_agent="tradecast-tests",
            client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )


@pytest.fixture
def farm() -> WorkerFarm:
    return WorkerFarm()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def cache(tmp_path) -> ArtifactCache:
    return ArtifactCache(tmp_path / "images", max_age_seconds=600)


@pytest.fixture
def make_service(tmp_path, farm: WorkerFarm, feed: FakeFeed, cache: ArtifactCache):
    def _make(hosts: Optional[List[str]] = None) -> RenderService:
        hosts = ["w1", "w2", "w3"] if hosts is None else hosts
        io_ = WorkersFileIO(tmp_path / "workers.json")
        registry = WorkerRegistry([farm.endpoint(h) for h in hosts], io=io_)
        return RenderService(
            registry=registry,
            cache=cache,
            feed=feed.client(),
            worker_client=farm.client(),
            poll_interval_seconds=0.01,
            sweep_interval_seconds=60,
        )

    return _make
