from __future__ import annotations

import logging
import re
import secrets
import time
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("tradecast.dispatch.cache")

_SAFE_ID = re.compile(r"[A-Za-z0-9_-]+")


def is_valid_listing_id(listing_id: str) -> bool:
    return bool(_SAFE_ID.fullmatch(listing_id))


IMAGE_SUFFIX = ".png"
TMP_SUFFIX = ".tmp"


class ArtifactCache:
    """
    Rendered images on disk, one `<listing_id>.png` per listing.

    The filesystem is the source of truth: there is no in-memory index and
    a file's mtime is its creation time.
    """

    def __init__(self, root: Path, max_age_seconds: float):
        self.root = root
        self.max_age_seconds = max_age_seconds
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, listing_id: str) -> Path:
        if not is_valid_listing_id(listing_id):
            raise ValueError(f"Invalid listing id: {listing_id!r}")
        return self.root / f"{listing_id}{IMAGE_SUFFIX}"

    def get(self, listing_id: str) -> Optional[bytes]:
        """Rendered bytes, or None when nothing is cached (yet)."""
        path = self.path_for(listing_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, listing_id: str) -> bool:
        return self.path_for(listing_id).is_file()

    def put(self, listing_id: str, data: bytes) -> Path:
        path = self.path_for(listing_id)
        # Unique temp name per write; readers only ever see the final name.
        tmp = path.with_suffix(f".{secrets.token_hex(4)}{TMP_SUFFIX}")
        try:
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        return path

    def count(self) -> int:
        try:
            return sum(1 for p in self.root.glob(f"*{IMAGE_SUFFIX}") if p.is_file())
        except OSError:
            logger.exception("Error counting cached images in %s", self.root)
            return 0

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """
        Delete every entry older than the retention window.

        Works file by file so it can run alongside concurrent puts. Returns
        the names of deleted files.
        """
        now = time.time() if now is None else now
        removed: List[str] = []

        try:
            candidates = list(self.root.iterdir())
        except OSError:
            logger.exception("Error during cleanup of %s", self.root)
            return removed

        for path in candidates:
            try:
                if not path.is_file():
                    continue
                age = now - path.stat().st_mtime
                if age <= self.max_age_seconds:
                    continue
                path.unlink()
            except FileNotFoundError:
                # Replaced or removed since listing
                continue
            except OSError:
                logger.exception("Error removing cached file %s", path)
                continue
            removed.append(path.name)
            logger.info("Cleaned up old image: %s", path.name)

        return removed
