# backend/app/renders/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field


# -----------------------------
# Enums
# -----------------------------

class RenderOutcome(str, Enum):
    """
    Result of a single render call against one worker.

    - success: worker returned a valid image.
    - overloaded: worker signalled resource exhaustion (distinguished status).
    - failed: any other status, an invalid body, a network error or a timeout.
    """

    SUCCESS = "success"
    OVERLOADED = "overloaded"
    FAILED = "failed"


DispatchStatus = Literal["rendered", "exhausted", "skipped", "cache_error"]


# -----------------------------
# Internal value objects
# -----------------------------

@dataclass(frozen=True)
class Listing:
    """A trade listing as observed on the upstream feed. Payload is opaque."""

    id: str
    payload: Any


@dataclass
class RenderResponse:
    outcome: RenderOutcome
    status_code: Optional[int] = None
    content: bytes = b""
    error: Optional[str] = None


@dataclass
class FeedSnapshot:
    listings: dict[str, Listing] = field(default_factory=dict)
    malformed: int = 0

    @property
    def ids(self) -> set[str]:
        return set(self.listings)


@dataclass
class PollResult:
    ok: bool
    new_ids: List[str] = field(default_factory=list)
    dispatched: List[str] = field(default_factory=list)
    malformed: int = 0
    error: Optional[str] = None


# -----------------------------
# API / report models
# -----------------------------

class RenderAttempt(BaseModel):
    endpoint: str
    outcome: RenderOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None


class DispatchResult(BaseModel):
    listing_id: str
    status: DispatchStatus
    endpoint: Optional[str] = None
    attempts: List[RenderAttempt] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "rendered"


class WorkerHealth(BaseModel):
    endpoint: str
    healthy: bool
    ram_usage_mb: float = 0.0
    error: Optional[str] = None


class WorkersHealth(BaseModel):
    total: int
    healthy: int
    reported_memory_mb: float
    workers: List[WorkerHealth] = Field(default_factory=list)


class HealthReport(BaseModel):
    """
    Manager health payload. Field names follow what the dashboard reads.
    """

    status: Literal["healthy"] = "healthy"
    manager: bool = True
    workers: int
    healthyWorkers: int
    processing: int
    cachedImages: int
    managerRam: int
    totalSystemRam: int
    ramUsage: float
    workersUsage: float


class WorkersSettings(BaseModel):
    workers: List[str]
