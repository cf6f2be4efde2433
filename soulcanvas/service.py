"""Image generation service: the composition root.

Wires the node registry, sketch uploader, adapter pool, health tracker and
failover orchestrator together, and exposes the one call the rest of an
application needs:

    generate(sketch, style_prompt, user_prompt=None, token=None) -> GenerationResult

Examples:
    >>> async with ImageGenerationService.from_settings(get_settings()) as service:
    ...     result = await service.generate(sketch, "watercolor", "a cat on a roof")
    ...     print(result.image_url, result.node_name)

Tests:
    - tests/unit/test_service.py
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from soulcanvas.config import get_settings
from soulcanvas.core.adapters import AdapterPool, GenerationRequest
from soulcanvas.core.cancellation import CancellationToken
from soulcanvas.core.failover import FailoverOrchestrator, FailoverPolicy
from soulcanvas.core.health import HealthTracker, NodeHealth, SelectionStrategy
from soulcanvas.core.nodes import Node, NodeRegistry
from soulcanvas.storage import ImageUploader, S3Config, S3Uploader

logger = logging.getLogger(__name__)


def generation_id() -> str:
    """Create a unique generation id (gen_<ms>_<random>)."""
    return f"gen_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def display_prompt(style_prompt: str, user_prompt: str | None = None) -> str:
    """Short prompt shown next to a result."""
    if user_prompt:
        return f"{user_prompt} (style: {style_prompt})"
    return style_prompt


class GenerationResult(BaseModel):
    """A generated image and where it came from.

    Attributes:
        id: Unique generation id
        image_url: Generated image URL (http(s) URL or data URI)
        sketch: The input sketch data URL
        prompt: Display prompt
        style_prompt: Style description used
        node_id: Node that produced the image
        node_name: Display name of that node
        created_at: Completion time (UTC)
    """

    id: str = Field(default_factory=generation_id)
    image_url: str
    sketch: str
    prompt: str
    style_prompt: str
    node_id: str
    node_name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ImageGenerationService:
    """Resilient sketch-to-image generation across the configured nodes."""

    def __init__(
        self,
        registry: NodeRegistry,
        adapters: AdapterPool,
        tracker: HealthTracker,
        orchestrator: FailoverOrchestrator | None = None,
        uploader: ImageUploader | None = None,
    ) -> None:
        self.registry = registry
        self.adapters = adapters
        self.tracker = tracker
        self.orchestrator = orchestrator or FailoverOrchestrator(registry, adapters, tracker)
        self.uploader = uploader

    @classmethod
    def from_settings(
        cls,
        settings: Any = None,
        policy: FailoverPolicy | None = None,
    ) -> "ImageGenerationService":
        """Build the service from application settings.

        The S3 uploader is only created when S3 storage is fully configured;
        without it the async job node fails fast and failover moves on.
        """
        settings = settings or get_settings()
        registry = NodeRegistry.from_settings(settings)

        s3_config = S3Config.from_settings(settings)
        uploader = S3Uploader(s3_config) if s3_config is not None else None
        if uploader is None:
            logger.info("S3 storage not configured, sketch upload disabled")

        adapters = AdapterPool(registry, settings=settings, uploader=uploader)
        tracker = HealthTracker.from_settings(registry, adapters, settings)
        orchestrator = FailoverOrchestrator(registry, adapters, tracker, policy=policy)
        return cls(registry, adapters, tracker, orchestrator=orchestrator, uploader=uploader)

    async def initialize(self) -> dict[str, NodeHealth]:
        """Probe every enabled node once at startup.

        Probe failures are recorded in the tracker and logged, never raised.
        """
        if not self.registry.enabled():
            logger.warning("No enabled nodes configured")
            return {}
        records = await self.tracker.probe_all()
        available = sum(1 for record in records.values() if record.is_available)
        logger.info(f"Health check complete: {available}/{len(records)} node(s) available")
        return records

    async def generate(
        self,
        sketch: str,
        style_prompt: str,
        user_prompt: str | None = None,
        token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Generate an image from a sketch.

        Args:
            sketch: Base64 sketch data URL.
            style_prompt: Style description.
            user_prompt: Optional user description.
            token: Optional cancellation token.

        Returns:
            GenerationResult for the winning node.

        Raises:
            CancellationError: If the token fired.
            ValidationError: If no node is available.
            NetworkError, APIError, TaskTimeoutError: The last node's failure.
        """
        request = GenerationRequest(
            sketch=sketch,
            style_prompt=style_prompt,
            user_prompt=user_prompt,
            token=token,
        )
        outcome = await self.orchestrator.generate_with_fallback(request)
        logger.info(f"Image generated successfully using node: {outcome.node.name}")

        return GenerationResult(
            image_url=outcome.image_url,
            sketch=sketch,
            prompt=display_prompt(style_prompt, user_prompt),
            style_prompt=style_prompt,
            node_id=outcome.node.id,
            node_name=outcome.node.name,
        )

    async def select_node(self, strategy: SelectionStrategy | str | None = None) -> Node:
        """Advisory node selection (see HealthTracker.select_node)."""
        return await self.tracker.select_node(strategy)

    def health(self) -> dict[str, NodeHealth]:
        """Snapshot of the health cache."""
        return self.tracker.snapshot()

    async def close(self) -> None:
        """Close adapter and uploader connections."""
        await self.adapters.close()
        if self.uploader is not None:
            await self.uploader.close()

    async def __aenter__(self) -> "ImageGenerationService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
