"""
Render step

The pipeline hands a project's listing data, configuration and persisted
assets to a render engine and waits for one of two outcomes: a
RenderResult (success) or RenderFailed. Real engines plug in behind the
same two-outcome contract.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from app.core.config import settings

logger = logging.getLogger(__name__)


class RenderFailed(Exception):
    pass


class RenderRequest(BaseModel):
    project_id: str
    listing_data: Dict[str, Any]
    project_config: Dict[str, Any]
    assets: List[Dict[str, Any]] = Field(default_factory=list)


class RenderResult(BaseModel):
    video_url: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class RenderEngine:
    name = "base"

    def render(self, request: RenderRequest) -> RenderResult:
        raise NotImplementedError


class SimulatedRenderEngine(RenderEngine):
    """Stand-in engine: waits a fixed delay and reports success without a video file."""

    name = "simulated"

    def __init__(self, delay_seconds: Optional[float] = None):
        self.delay_seconds = settings.RENDER_DELAY_SECONDS if delay_seconds is None else delay_seconds

    def render(self, request: RenderRequest) -> RenderResult:
        logger.info("Simulating render for project %s (%ss)", request.project_id, self.delay_seconds)
        time.sleep(self.delay_seconds)
        return RenderResult(meta={"engine": self.name, "simulated": True})


class HttpRenderEngine(RenderEngine):
    """Delegates to an external render backend over HTTP and waits for its answer."""

    name = "http"

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, timeout: float = 600.0):
        self.api_url = api_url or settings.RENDER_API_URL
        self.api_key = api_key or settings.RENDER_API_KEY
        self.timeout = timeout
        if not self.api_url:
            raise ValueError("RENDER_API_URL is required for the http render engine")

    def render(self, request: RenderRequest) -> RenderResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = httpx.post(
                self.api_url,
                json=request.model_dump(),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise RenderFailed("Render backend timed out") from e
        except httpx.HTTPError as e:
            raise RenderFailed(f"Render backend unreachable: {e}") from e

        logger.info("Render backend response [%s] for project %s", response.status_code, request.project_id)
        if response.status_code not in (200, 201):
            raise RenderFailed(f"Render backend error {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if data.get("status") in ("error", "failed"):
            raise RenderFailed(data.get("error") or "Render backend reported failure")

        return RenderResult(video_url=data.get("video_url"), meta={"engine": self.name, **(data.get("meta") or {})})


def render_with_timeout(engine: RenderEngine, request: RenderRequest, timeout: Optional[float]) -> RenderResult:
    """Run engine.render, failing with RenderFailed if it exceeds `timeout` seconds."""
    if not timeout:
        return engine.render(request)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="render")
    future = executor.submit(engine.render, request)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        raise RenderFailed(f"Render exceeded {timeout}s") from e
    finally:
        # Don't block on a hung engine; its thread is abandoned
        executor.shutdown(wait=False)


def get_render_engine(name: Optional[str] = None) -> RenderEngine:
    name = name or settings.RENDER_ENGINE
    if name == "simulated":
        return SimulatedRenderEngine()
    if name == "http":
        return HttpRenderEngine()
    raise ValueError(f"Unknown render engine: {name}")
