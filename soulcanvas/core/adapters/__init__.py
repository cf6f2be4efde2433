"""Image adapters and the per-node adapter pool.

Re-exports the adapter classes and maps each node mode to its adapter.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from soulcanvas.config import get_settings
from soulcanvas.core.adapters.base import GenerationRequest, ImageAdapter
from soulcanvas.core.adapters.chat import ChatCompletionsAdapter, extract_image_reference
from soulcanvas.core.adapters.jobs import GenerationTask, JobQueueAdapter, TaskState
from soulcanvas.core.errors import ValidationError
from soulcanvas.core.nodes import Node, NodeMode, NodeRegistry
from soulcanvas.storage import ImageUploader

logger = logging.getLogger(__name__)

ADAPTERS: dict[NodeMode, type[ImageAdapter]] = {
    NodeMode.SYNC: ChatCompletionsAdapter,
    NodeMode.ASYNC_JOB: JobQueueAdapter,
}

AdapterFactory = Callable[[Node, str, Any, ImageUploader | None], ImageAdapter]


def create_adapter(
    node: Node,
    api_key: str,
    settings: Any,
    uploader: ImageUploader | None = None,
) -> ImageAdapter:
    """Create the adapter matching a node's mode.

    Args:
        node: The node to talk to.
        api_key: The node's API key.
        settings: Application settings (timeouts, retry, polling).
            Defaults to get_settings().
        uploader: Sketch uploader for URL-only backends.

    Returns:
        A configured ImageAdapter.

    Raises:
        ValidationError: If no adapter exists for the node's mode.
    """
    settings = settings or get_settings()
    adapter_class = ADAPTERS.get(node.mode)
    if adapter_class is None:
        raise ValidationError(f"No adapter for node mode: {node.mode}", node_id=node.id)
    return adapter_class.from_settings(node, api_key, settings, uploader=uploader)


class AdapterPool:
    """Lazily created adapters, one per node.

    Adapters hold an HTTP client each, so they are cached by node id and
    closed together.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        settings: Any = None,
        uploader: ImageUploader | None = None,
        factory: AdapterFactory = create_adapter,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.uploader = uploader
        self.factory = factory
        self._adapters: dict[str, ImageAdapter] = {}

    def get(self, node: Node) -> ImageAdapter:
        """Get (or create) the adapter for a node.

        Raises:
            ValidationError: If the node has no credentials.
        """
        adapter = self._adapters.get(node.id)
        if adapter is None:
            api_key = self.registry.api_key(node.id)
            adapter = self.factory(node, api_key, self.settings, self.uploader)
            self._adapters[node.id] = adapter
            logger.debug(f"Created {type(adapter).__name__} for {node.name}")
        return adapter

    def register(self, node_id: str, adapter: ImageAdapter) -> None:
        """Install a prebuilt adapter for a node."""
        self._adapters[node_id] = adapter

    async def close(self) -> None:
        """Close all adapter connections."""
        for adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()


__all__ = [
    "ADAPTERS",
    "AdapterPool",
    "ChatCompletionsAdapter",
    "GenerationRequest",
    "GenerationTask",
    "ImageAdapter",
    "JobQueueAdapter",
    "TaskState",
    "create_adapter",
    "extract_image_reference",
]
