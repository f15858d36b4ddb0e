from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import HttpUrl, TypeAdapter, ValidationError

from .errors import NoWorkersError, WorkersFileError

logger = logging.getLogger("tradecast.dispatch.registry")


def _normalize(endpoint: str) -> str:
    return endpoint.strip().rstrip("/")


_HTTP_URL = TypeAdapter(HttpUrl)


def validate_endpoints(endpoints: Sequence[str]) -> List[str]:
    """
    Normalize worker base URLs, rejecting anything that is not a usable
    http(s) URL (bad scheme, out-of-range port, ...).

    Raises ValueError naming the first invalid entry.
    """
    normalized: List[str] = []
    for endpoint in endpoints:
        if not isinstance(endpoint, str):
            raise ValueError(f"Worker endpoint must be a string: {endpoint!r}")
        value = _normalize(endpoint)
        try:
            _HTTP_URL.validate_python(value)
        except ValidationError as e:
            raise ValueError(f"Invalid worker endpoint {endpoint!r}: {e.errors()[0]['msg']}") from e
        normalized.append(value)
    return normalized


class WorkersFileIO:
    """
    Handles reading/writing the worker endpoint list (`workers.json`) atomically.

    The file holds a plain JSON array of base URLs, in rotation order.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[List[str]]:
        """Return the persisted list, or None when the file is absent or unusable."""
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception:
            logger.exception("Error loading workers file %s", self.path)
            return None
        if not isinstance(raw, list) or not all(isinstance(x, str) for x in raw):
            logger.error("Workers file %s is not a list of strings; ignoring it", self.path)
            return None
        try:
            return validate_endpoints(raw)
        except ValueError as e:
            logger.error("Workers file %s has an invalid endpoint; ignoring it: %s", self.path, e)
            return None

    def save(self, workers: Sequence[str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(list(workers), indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise WorkersFileError(f"Failed to save workers file {self.path}: {e}") from e


class WorkerRegistry:
    """
    Ordered worker endpoints with a shared round-robin cursor.

    The cursor is never reset on replace; it is reduced modulo the
    current list length at selection time.
    """

    def __init__(self, endpoints: Sequence[str], io: Optional[WorkersFileIO] = None):
        self._lock = threading.Lock()
        self._endpoints: List[str] = [_normalize(e) for e in endpoints]
        self._cursor = 0
        self._io = io

    @classmethod
    def from_file(cls, io: WorkersFileIO, default: Sequence[str]) -> "WorkerRegistry":
        endpoints = io.load()
        if endpoints is None:
            endpoints = list(default)
            logger.info("No workers file at %s; using defaults %s", io.path, endpoints)
        return cls(endpoints, io=io)

    def next(self) -> str:
        with self._lock:
            if not self._endpoints:
                raise NoWorkersError("No worker endpoints registered")
            endpoint = self._endpoints[self._cursor % len(self._endpoints)]
            self._cursor += 1
            return endpoint

    def all(self) -> List[str]:
        with self._lock:
            return list(self._endpoints)

    def __len__(self) -> int:
        with self._lock:
            return len(self._endpoints)

    def replace(self, endpoints: Sequence[str]) -> None:
        """
        Swap the endpoint list and write it through to the workers file.

        A failed write is logged; the new list still applies for this process.
        """
        new = [_normalize(e) for e in endpoints]
        with self._lock:
            self._endpoints = new
        logger.info("Worker list replaced: %s", new)

        if self._io is None:
            return
        try:
            self._io.save(new)
        except WorkersFileError:
            logger.exception("Error saving workers file")
