from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import httpx
import psutil

from ..config import Settings
from .cache import ArtifactCache
from .dispatcher import Dispatcher
from .feed import FeedClient
from .health import HealthAggregator
from .models import DispatchResult, HealthReport, Listing
from .poller import Poller
from .registry import WorkerRegistry, WorkersFileIO
from .tracker import InFlightTracker
from .worker_client import WorkerClient

logger = logging.getLogger("tradecast.dispatch.service")

_MB = 1024 * 1024


class ListingNotFound(KeyError):
    pass


class RenderService:
    """
    Owns the registry, cache, in-flight tracker, dispatcher, poller and
    health aggregator for one process.
    """

    def __init__(
        self,
        *,
        registry: WorkerRegistry,
        cache: ArtifactCache,
        feed: FeedClient,
        worker_client: WorkerClient,
        poll_interval_seconds: float = 60.0,
        sweep_interval_seconds: float = 60 * 60,
        worker_memory_budget_mb: int = 512,
    ):
        self.registry = registry
        self.cache = cache
        self.feed = feed
        self.worker_client = worker_client
        self.tracker = InFlightTracker()
        self.dispatcher = Dispatcher(registry, cache, self.tracker, worker_client)
        self.poller = Poller(feed, self.dispatcher, self.tracker)
        self.health = HealthAggregator(registry, worker_client)

        self.poll_interval_seconds = poll_interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.worker_memory_budget_mb = worker_memory_budget_mb
        self._loops: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "RenderService":
        registry = WorkerRegistry.from_file(
            WorkersFileIO(settings.workers_file),
            default=settings.default_workers(),
        )
        return cls(
            registry=registry,
            cache=ArtifactCache(settings.images_dir, settings.cache_max_age_seconds),
            feed=FeedClient(
                settings.feed_url,
                user_agent=settings.feed_user_agent,
                timeout=settings.feed_timeout_seconds,
            ),
            worker_client=WorkerClient(
                httpx.AsyncClient(),
                render_timeout=settings.render_timeout_seconds,
                health_timeout=settings.health_timeout_seconds,
                overloaded_status=settings.overloaded_status,
            ),
            poll_interval_seconds=settings.poll_interval_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            worker_memory_budget_mb=settings.worker_memory_budget_mb,
        )

    # ----------------------------
    # Operations used by the HTTP surface
    # ----------------------------

    async def force_dispatch(self, listing_id: str) -> DispatchResult:
        """
        Render one listing now, bypassing the poll cycle.

        Uses the listing from the last poll when known, otherwise fetches the
        feed. Raises FeedError if the feed is unreachable and ListingNotFound
        if the id is not on it.
        """
        listing: Optional[Listing] = self.poller.known(listing_id)
        if listing is None:
            listing = await self.feed.find(listing_id)
        if listing is None:
            raise ListingNotFound(listing_id)
        return await self.dispatcher.dispatch(listing)

    async def health_report(self) -> HealthReport:
        workers = await self.health.check_all()

        usage = 0.0
        if workers.healthy:
            usage = workers.reported_memory_mb / (workers.healthy * self.worker_memory_budget_mb) * 100

        return HealthReport(
            workers=workers.total,
            healthyWorkers=workers.healthy,
            processing=len(self.tracker),
            cachedImages=await asyncio.to_thread(self.cache.count),
            managerRam=round(psutil.Process().memory_info().rss / _MB),
            totalSystemRam=round(psutil.virtual_memory().total / _MB),
            ramUsage=workers.reported_memory_mb,
            workersUsage=usage,
        )

    # ----------------------------
    # Background loops
    # ----------------------------

    async def _sweep_once(self) -> None:
        await asyncio.to_thread(self.cache.sweep)

    async def _periodic(
        self,
        name: str,
        fn: Callable[[], Awaitable[object]],
        interval_seconds: float,
        *,
        eager: bool,
    ) -> None:
        if not eager:
            await asyncio.sleep(interval_seconds)
        while True:
            try:
                await fn()
            except Exception:
                logger.exception("%s iteration failed", name)
            await asyncio.sleep(interval_seconds)

    def start(self) -> None:
        """Start polling (eagerly) and cache sweeping. Must run inside the event loop."""
        if self._loops:
            return
        self._loops = [
            asyncio.create_task(
                self._periodic("poll", self.poller.poll_once, self.poll_interval_seconds, eager=True),
                name="poll-loop",
            ),
            asyncio.create_task(
                self._periodic("sweep", self._sweep_once, self.sweep_interval_seconds, eager=False),
                name="sweep-loop",
            ),
        ]
        logger.info(
            "Started background loops (poll every %ss, sweep every %ss)",
            self.poll_interval_seconds,
            self.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        loops, self._loops = self._loops, []
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)
        await self.dispatcher.cancel_all()
        await self.worker_client.aclose()
        await self.feed.aclose()


# ----------------------------
# Process singleton
# ----------------------------

_service: Optional[RenderService] = None


def get_render_service() -> RenderService:
    global _service
    if _service is None:
        from ..config import settings

        _service = RenderService.from_settings(settings)
    return _service


def start_render_service(app) -> None:
    svc = get_render_service()
    svc.start()
    app.state.render_service = svc


async def stop_render_service(app) -> None:
    svc = getattr(app.state, "render_service", None)
    if svc is None:
        return
    await svc.stop()
