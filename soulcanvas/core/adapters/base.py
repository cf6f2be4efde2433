"""Base image adapter abstraction.

Every node speaks to its backend through an ImageAdapter. The interface is
deliberately small: generate() turns a sketch request into an image URL and
probe() measures latency against the node's health endpoint.

Examples:
    >>> adapter = create_adapter(node, api_key, settings)
    >>> latency_ms = await adapter.probe()
    >>> url = await adapter.generate(GenerationRequest(sketch, "watercolor"))

Tests:
    - tests/unit/test_chat_adapter.py
    - tests/unit/test_job_adapter.py
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from soulcanvas.core.cancellation import CancellationToken, run_cancellable
from soulcanvas.core.errors import NetworkError, classify_status
from soulcanvas.core.nodes import Node, NodeMode
from soulcanvas.prompts import build_final_prompt

logger = logging.getLogger(__name__)

PromptBuilder = Callable[[str, str | None], str]

DEFAULT_REQUEST_TIMEOUT = 120.0
DEFAULT_PROBE_TIMEOUT = 5.0


@dataclass(frozen=True)
class GenerationRequest:
    """Input for one image generation call.

    Attributes:
        sketch: Base64 sketch image as a data URL (data:image/png;base64,...)
        style_prompt: Style description
        user_prompt: Optional user description
        token: Cancellation token shared by every step of the call
    """

    sketch: str
    style_prompt: str
    user_prompt: str | None = None
    token: CancellationToken | None = None


class ImageAdapter(ABC):
    """Abstract client for one node's request/response shape.

    Attributes:
        mode: The node mode this adapter implements
        node: The node this adapter talks to
        api_key: Bearer token for the node
        request_timeout: Per-request timeout (seconds), separate from cancellation
        probe_timeout: Health check timeout (seconds)
    """

    mode: NodeMode

    def __init__(
        self,
        node: Node,
        api_key: str,
        *,
        prompt_builder: PromptBuilder = build_final_prompt,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.node = node
        self.api_key = api_key
        self.prompt_builder = prompt_builder
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, node: Node, api_key: str, settings: Any, **kwargs: Any) -> "ImageAdapter":
        """Create an adapter using timeouts from application settings."""
        return cls(
            node,
            api_key,
            request_timeout=settings.REQUEST_TIMEOUT,
            probe_timeout=settings.HEALTH_CHECK_TIMEOUT,
            **kwargs,
        )

    def default_headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        return {"Authorization": f"Bearer {self.api_key}"}

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.node.base_url,
                timeout=self.request_timeout,
                headers=self.default_headers(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def build_prompt(self, request: GenerationRequest) -> str:
        """Compose the final prompt text for a request."""
        return self.prompt_builder(request.style_prompt, request.user_prompt)

    async def send(
        self,
        method: str,
        path: str,
        token: CancellationToken | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one HTTP request bounded by the request timeout and the token.

        A request timeout or transport failure becomes a NetworkError so it
        can be retried. Cancellation surfaces as CancellationError.

        Raises:
            NetworkError: On timeout or connection failure.
            CancellationError: If the token fires first.
        """
        try:
            return await asyncio.wait_for(
                run_cancellable(self.client.request(method, path, **kwargs), token),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Request timed out after {self.request_timeout:.0f}s",
                node_id=self.node.id,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.node.name} HTTP error: {e}")
            raise NetworkError(f"HTTP error: {e}", node_id=self.node.id) from e

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> str:
        """Generate an image from a sketch.

        Args:
            request: The generation request.

        Returns:
            The generated image URL (http(s) URL or data URI).

        Raises:
            ImageGenerationError: On any failure.
        """

    async def probe(self) -> float:
        """Measure latency against the node's health endpoint.

        Returns:
            Round-trip latency in milliseconds.

        Raises:
            NetworkError: On timeout, connection failure, 5xx or 429.
            APIError: On other non-2xx responses.
        """
        start_time = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.get(self.node.health_path),
                timeout=self.probe_timeout,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Health check timed out after {self.probe_timeout:.0f}s",
                node_id=self.node.id,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Health check failed: {e}", node_id=self.node.id) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        if not response.is_success:
            raise classify_status(
                response.status_code,
                node_id=self.node.id,
                action="Health check failed",
            )
        return latency_ms
