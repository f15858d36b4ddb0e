from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from .dispatcher import Dispatcher
from .errors import FeedError
from .feed import FeedClient
from .models import Listing, PollResult
from .tracker import InFlightTracker

logger = logging.getLogger("tradecast.dispatch.poller")


class Poller:
    """
    Detects listings that appeared since the previous poll and hands them
    to the dispatcher without waiting for the renders.
    """

    def __init__(self, feed: FeedClient, dispatcher: Dispatcher, tracker: InFlightTracker):
        self.feed = feed
        self.dispatcher = dispatcher
        self.tracker = tracker
        self._seen: FrozenSet[str] = frozenset()
        self._latest: Dict[str, Listing] = {}

    @property
    def seen(self) -> FrozenSet[str]:
        return self._seen

    def has_seen(self, listing_id: str) -> bool:
        return listing_id in self._seen

    def known(self, listing_id: str) -> Optional[Listing]:
        """The listing as of the last successful poll, if it was on the feed."""
        return self._latest.get(listing_id)

    async def poll_once(self) -> PollResult:
        logger.info("Polling for new trade ads...")
        try:
            snapshot = await self.feed.fetch()
        except FeedError as e:
            logger.error("Error polling trade ads: %s", e)
            return PollResult(ok=False, error=str(e))

        current = snapshot.ids
        new_ids = sorted(current - self._seen)
        result = PollResult(ok=True, new_ids=new_ids, malformed=snapshot.malformed)

        if new_ids:
            logger.info("Found %d new trade ads: %s", len(new_ids), ", ".join(new_ids))

        for listing_id in new_ids:
            if listing_id in self.tracker:
                continue
            if self.dispatcher.spawn(snapshot.listings[listing_id]):
                result.dispatched.append(listing_id)

        # Replaced, not merged: ids that left the feed are forgotten.
        self._seen = frozenset(current)
        self._latest = dict(snapshot.listings)
        return result
