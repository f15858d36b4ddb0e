from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .cache import ArtifactCache
from .errors import NoWorkersError
from .models import DispatchResult, Listing, RenderAttempt, RenderOutcome
from .registry import WorkerRegistry
from .tracker import InFlightTracker
from .worker_client import WorkerClient

logger = logging.getLogger("tradecast.dispatch.dispatcher")


class Dispatcher:
    """
    Gets a listing rendered by one of the registered workers.

    Workers are tried one at a time in rotation order. Overloaded and
    failed calls each consume one attempt; the bound is the number of
    registered workers when the dispatch starts.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        cache: ArtifactCache,
        tracker: InFlightTracker,
        client: WorkerClient,
    ):
        self.registry = registry
        self.cache = cache
        self.tracker = tracker
        self.client = client
        self._tasks: Set[asyncio.Task] = set()

    # ----------------------------
    # Entry points
    # ----------------------------

    async def dispatch(self, listing: Listing) -> DispatchResult:
        """Render a listing now. No-op if it is already in flight."""
        if not self.tracker.try_add(listing.id):
            logger.info("Trade ad %s already processing; skipping", listing.id)
            return DispatchResult(listing_id=listing.id, status="skipped")
        return await self._run_claimed(listing)

    def spawn(self, listing: Listing) -> bool:
        """
        Claim the id now and render it in a background task.

        Returns False when the id is already in flight (nothing scheduled).
        Must be called from inside the running event loop.
        """
        if not self.tracker.try_add(listing.id):
            return False
        try:
            task = asyncio.create_task(self._run_claimed(listing), name=f"dispatch-{listing.id}")
        except RuntimeError:
            self.tracker.discard(listing.id)
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ----------------------------
    # Attempt loop
    # ----------------------------

    async def _run_claimed(self, listing: Listing) -> DispatchResult:
        try:
            return await self._attempt_loop(listing)
        except Exception:
            logger.exception("Unexpected error processing trade ad %s", listing.id)
            return DispatchResult(listing_id=listing.id, status="exhausted")
        finally:
            self.tracker.discard(listing.id)

    def _select(self, tried: Set[str]) -> Optional[str]:
        """Next endpoint not yet tried for this listing, or None if all were."""
        for _ in range(max(len(self.registry), 1)):
            try:
                endpoint = self.registry.next()
            except NoWorkersError:
                return None
            if endpoint not in tried:
                return endpoint
            if set(self.registry.all()) <= tried:
                return None
        return None

    async def _attempt_loop(self, listing: Listing) -> DispatchResult:
        result = DispatchResult(listing_id=listing.id, status="exhausted")
        max_attempts = len(self.registry)
        tried: Set[str] = set()
        attempts = 0

        while attempts < max_attempts:
            endpoint = self._select(tried)
            if endpoint is None:
                break
            tried.add(endpoint)

            logger.info("Processing trade ad %s on %s", listing.id, endpoint)
            resp = await self.client.render(endpoint, listing.payload)
            attempts += 1
            result.attempts.append(
                RenderAttempt(
                    endpoint=endpoint,
                    outcome=resp.outcome,
                    status_code=resp.status_code,
                    error=resp.error,
                )
            )

            if resp.outcome is RenderOutcome.OVERLOADED:
                logger.warning("%s overloaded, trying next worker", endpoint)
                continue
            if resp.outcome is RenderOutcome.FAILED:
                logger.error(
                    "Worker %s failed for trade ad %s: %s", endpoint, listing.id, resp.error
                )
                continue

            result.endpoint = endpoint
            try:
                await asyncio.to_thread(self.cache.put, listing.id, resp.content)
            except OSError:
                logger.exception("Error saving image for trade ad %s", listing.id)
                result.status = "cache_error"
                return result

            logger.info("Successfully saved image for trade ad %s", listing.id)
            result.status = "rendered"
            return result

        logger.error(
            "All workers overloaded or failed for trade ad %s (%d attempt(s))",
            listing.id,
            attempts,
        )
        return result
