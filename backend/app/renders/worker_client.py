from __future__ import annotations

import io
import logging
from typing import Any, Optional

import httpx
from PIL import Image

from .models import RenderOutcome, RenderResponse, WorkerHealth

logger = logging.getLogger("tradecast.dispatch.worker")

OVERLOADED_STATUS = 367


def is_valid_image(content: bytes) -> bool:
    if not content:
        return False
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
        return True
    except Exception:
        return False


class WorkerClient:
    """
    HTTP calls against a rendering worker.

    - POST {endpoint}/generate  {"tradeData": payload} -> PNG bytes
    - GET  {endpoint}/health    -> {"ramUsage": <MB>, ...}

    Never raises for worker-side problems; every failure is folded into
    the returned object.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        render_timeout: float = 60.0,
        health_timeout: float = 5.0,
        overloaded_status: int = OVERLOADED_STATUS,
    ):
        self._client = client or httpx.AsyncClient()
        self.render_timeout = render_timeout
        self.health_timeout = health_timeout
        self.overloaded_status = overloaded_status

    async def aclose(self) -> None:
        await self._client.aclose()

    async def render(self, endpoint: str, payload: Any) -> RenderResponse:
        url = f"{endpoint}/generate"
        try:
            resp = await self._client.post(
                url,
                json={"tradeData": payload},
                timeout=self.render_timeout,
            )
        except httpx.TimeoutException:
            return RenderResponse(outcome=RenderOutcome.FAILED, error="timeout")
        except httpx.HTTPError as e:
            return RenderResponse(outcome=RenderOutcome.FAILED, error=f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.warning("Render call to %s failed: %s", endpoint, e)
            return RenderResponse(outcome=RenderOutcome.FAILED, error=f"{type(e).__name__}: {e}")

        if resp.status_code == self.overloaded_status:
            return RenderResponse(outcome=RenderOutcome.OVERLOADED, status_code=resp.status_code)

        if resp.status_code != 200:
            return RenderResponse(
                outcome=RenderOutcome.FAILED,
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}",
            )

        if not is_valid_image(resp.content):
            return RenderResponse(
                outcome=RenderOutcome.FAILED,
                status_code=resp.status_code,
                error="response body is not an image",
            )

        return RenderResponse(
            outcome=RenderOutcome.SUCCESS,
            status_code=resp.status_code,
            content=resp.content,
        )

    async def health(self, endpoint: str) -> WorkerHealth:
        url = f"{endpoint}/health"
        try:
            resp = await self._client.get(url, timeout=self.health_timeout)
        except httpx.HTTPError as e:
            logger.warning("Worker %s is unhealthy: %s", endpoint, e)
            return WorkerHealth(endpoint=endpoint, healthy=False, error=str(e) or type(e).__name__)
        except Exception as e:
            logger.warning("Health check failed for worker %s: %s", endpoint, e)
            return WorkerHealth(endpoint=endpoint, healthy=False, error=str(e) or type(e).__name__)

        if not 200 <= resp.status_code < 300:
            logger.warning("Worker %s is unhealthy: HTTP %s", endpoint, resp.status_code)
            return WorkerHealth(endpoint=endpoint, healthy=False, error=f"HTTP {resp.status_code}")

        ram = 0.0
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            raw = data.get("ramUsage")
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                ram = float(raw)

        return WorkerHealth(endpoint=endpoint, healthy=True, ram_usage_mb=ram)
