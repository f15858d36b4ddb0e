# backend/app/renders/health.py
from __future__ import annotations

import asyncio
import logging
from typing import List

from .models import WorkerHealth, WorkersHealth
from .registry import WorkerRegistry
from .worker_client import WorkerClient

logger = logging.getLogger("tradecast.dispatch.health")


class HealthAggregator:
    """
    Probe every registered worker's health endpoint concurrently.

    Rules:
    - Each probe has its own timeout (set on the WorkerClient).
    - A failed or timed-out probe marks that worker unhealthy and adds 0 RAM.
    - One bad worker never fails the aggregation.
    """

    def __init__(self, registry: WorkerRegistry, client: WorkerClient):
        self.registry = registry
        self.client = client

    async def check_all(self) -> WorkersHealth:
        endpoints = self.registry.all()
        outcomes = await asyncio.gather(
            *(self.client.health(e) for e in endpoints),
            return_exceptions=True,
        )

        results: List[WorkerHealth] = []
        for endpoint, outcome in zip(endpoints, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning("Health check failed for worker %s: %s", endpoint, outcome)
                outcome = WorkerHealth(endpoint=endpoint, healthy=False, error=str(outcome) or type(outcome).__name__)
            results.append(outcome)

        healthy = [r for r in results if r.healthy]
        return WorkersHealth(
            total=len(endpoints),
            healthy=len(healthy),
            reported_memory_mb=sum(r.ram_usage_mb for r in healthy),
            workers=results,
        )
