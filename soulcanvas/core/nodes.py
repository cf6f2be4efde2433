"""Node registry: the static list of candidate image backends.

Nodes are loaded once at startup and never mutated. A node whose credentials
are missing is registered as disabled instead of failing at request time.

Examples:
    >>> from soulcanvas.core.nodes import NodeRegistry
    >>> registry = NodeRegistry.from_settings(get_settings())
    >>> [node.id for node in registry.enabled()]
    ['kie', 'openrouter']

Tests:
    - tests/unit/test_nodes.py
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from soulcanvas.config import KIE_NODE_ID, OPENROUTER_NODE_ID
from soulcanvas.core.errors import ValidationError

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[str], str | None]


class NodeMode(str, Enum):
    """Request shape spoken by a node.

    - SYNC: single-shot chat completion returning the image inline
    - ASYNC_JOB: create a task, then poll it until it finishes
    """

    SYNC = "sync"
    ASYNC_JOB = "async"


class Node(BaseModel):
    """One configured backend provider.

    Attributes:
        id: Unique node identifier
        name: Display name
        base_url: API base URL
        health_path: Path probed for latency/health checks
        priority: Lower number = preferred
        enabled: Whether the node may be used at all
        mode: Request shape (sync or async job)
        model: Model identifier sent to the backend
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    base_url: str
    health_path: str = "/"
    priority: int = 0
    enabled: bool = True
    mode: NodeMode
    model: str


def default_nodes(settings: Any) -> list[Node]:
    """Built-in nodes: kie.ai first, OpenRouter as backup.

    Args:
        settings: Application settings.

    Returns:
        The declared nodes (credentials are applied by the registry).
    """
    return [
        Node(
            id=KIE_NODE_ID,
            name="kie.ai",
            base_url=settings.KIE_BASE_URL.rstrip("/"),
            health_path="/chat/credit",
            priority=1,
            enabled=settings.KIE_ENABLED,
            mode=NodeMode.ASYNC_JOB,
            model=settings.KIE_IMAGE_MODEL,
        ),
        Node(
            id=OPENROUTER_NODE_ID,
            name="OpenRouter",
            base_url=settings.OPENROUTER_BASE_URL.rstrip("/"),
            health_path="/credits",
            priority=2,
            enabled=settings.OPENROUTER_ENABLED,
            mode=NodeMode.SYNC,
            model=settings.OPENROUTER_IMAGE_MODEL,
        ),
    ]


class NodeRegistry:
    """Immutable lookup over the configured nodes.

    Attributes:
        credentials: Per-node credential provider (node id -> API key or None)
    """

    def __init__(
        self,
        nodes: Iterable[Node],
        credentials: CredentialProvider | Mapping[str, str | None],
    ) -> None:
        """Initialize the registry.

        Args:
            nodes: Declared nodes.
            credentials: Callable or mapping returning the API key for a node id.

        Raises:
            ValidationError: If two nodes share an id.
        """
        if isinstance(credentials, Mapping):
            mapping = dict(credentials)
            self.credentials: CredentialProvider = mapping.get
        else:
            self.credentials = credentials

        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise ValidationError(f"Duplicate node id: {node.id}")
            if node.enabled and not self.credentials(node.id):
                logger.info(f"Node {node.name} has no credentials configured, disabling it")
                node = node.model_copy(update={"enabled": False})
            self._nodes[node.id] = node

    @classmethod
    def from_settings(cls, settings: Any) -> "NodeRegistry":
        """Create the registry with the built-in nodes and settings credentials."""
        return cls(default_nodes(settings), settings.get_api_key)

    def all(self) -> list[Node]:
        """Every node, in declaration order."""
        return list(self._nodes.values())

    def enabled(self) -> list[Node]:
        """Enabled nodes sorted ascending by priority."""
        return sorted(
            (node for node in self._nodes.values() if node.enabled),
            key=lambda node: node.priority,
        )

    def get(self, node_id: str) -> Node:
        """Get a node by id.

        Raises:
            ValidationError: If the node is unknown.
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ValidationError(f"Unknown node: {node_id}") from None

    def api_key(self, node_id: str) -> str:
        """Get the API key for a node.

        Raises:
            ValidationError: If the node has no credentials.
        """
        key = self.credentials(node_id)
        if not key:
            raise ValidationError(f"No API key configured for node {node_id}", node_id=node_id)
        return key

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
