from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .cache import is_valid_listing_id
from .errors import FeedError
from .models import FeedSnapshot, Listing

logger = logging.getLogger("tradecast.dispatch.feed")


def _listing_from_entry(entry: Any) -> Optional[Listing]:
    """
    Trade ad entries are arrays: [id, created, user_id, username, offer, request].
    Only the id is interpreted; the whole entry is the render payload.
    """
    if not isinstance(entry, list) or not entry:
        return None
    raw_id = entry[0]
    if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
        return None
    listing_id = str(raw_id).strip()
    if not is_valid_listing_id(listing_id):
        return None
    return Listing(id=listing_id, payload=entry)


def parse_feed(data: Any) -> FeedSnapshot:
    """
    Build a snapshot from a decoded feed body.

    Raises FeedError when there is no listing array at all. Individual
    malformed entries are skipped and counted.
    """
    if not isinstance(data, dict):
        raise FeedError("Feed body is not an object")

    entries = data.get("trade_ads")
    if entries is None:
        entries = data.get("ads")
    if not isinstance(entries, list):
        raise FeedError("Feed body has no trade_ads array")

    snapshot = FeedSnapshot()
    for entry in entries:
        listing = _listing_from_entry(entry)
        if listing is None:
            snapshot.malformed += 1
            continue
        snapshot.listings[listing.id] = listing

    if snapshot.malformed:
        logger.warning("Skipped %d malformed trade ad entries", snapshot.malformed)
    return snapshot


class FeedClient:
    """Fetches the upstream trade ad feed."""

    def __init__(
        self,
        url: str,
        *,
        user_agent: str,
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self) -> FeedSnapshot:
        try:
            resp = await self._client.get(
                self.url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FeedError(f"Feed returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FeedError(f"Feed request failed: {type(e).__name__}: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise FeedError(f"Feed body is not JSON: {e}") from e

        return parse_feed(data)

    async def find(self, listing_id: str) -> Optional[Listing]:
        """Fetch the feed and return one listing, or None if it is not on it."""
        snapshot = await self.fetch()
        return snapshot.listings.get(str(listing_id).strip())
