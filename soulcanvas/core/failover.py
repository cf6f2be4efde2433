"""Sequential failover across nodes.

Tries each candidate node in order until one returns an image. A failed node
is marked in the health tracker and the next one is tried; a cancellation
stops the whole operation. Only when every candidate has failed is the last
error raised to the caller.

Examples:
    >>> orchestrator = FailoverOrchestrator(registry, adapters, tracker)
    >>> result = await orchestrator.generate_with_fallback(request)
    >>> result.node.id, result.attempts
    ('openrouter', ['kie', 'openrouter'])

Tests:
    - tests/unit/test_failover.py
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from soulcanvas.core.adapters import AdapterPool, GenerationRequest
from soulcanvas.core.errors import CancellationError, ValidationError
from soulcanvas.core.health import HealthTracker
from soulcanvas.core.nodes import Node, NodeRegistry

logger = logging.getLogger(__name__)


class FailoverPolicy:
    """Decides which nodes a generation may use and in what order.

    The default policy returns every enabled node in ascending priority,
    whatever its current health. Attempts are always made one node at a
    time: each backend call is paid and rate limited, so nodes are never
    raced against each other.

    Note:
        HealthTracker.select_node() (priority, latency, round-robin) is not
        consulted here, so a node the tracker considers unhealthy is still
        tried in its priority slot. Subclass and override order() to feed
        advisory health into failover.
    """

    def order(self, nodes: list[Node]) -> list[Node]:
        """Return the candidate nodes in attempt order."""
        return sorted((node for node in nodes if node.enabled), key=lambda node: node.priority)


class FailoverResult(BaseModel):
    """Outcome of a successful failover generation.

    Attributes:
        image_url: The generated image URL
        node: The node that produced it
        attempts: Node ids tried, in order (the last one succeeded)
    """

    image_url: str
    node: Node
    attempts: list[str]


class FailoverOrchestrator:
    """Runs a generation request across nodes until one succeeds."""

    def __init__(
        self,
        registry: NodeRegistry,
        adapters: AdapterPool,
        tracker: HealthTracker,
        policy: FailoverPolicy | None = None,
    ) -> None:
        self.registry = registry
        self.adapters = adapters
        self.tracker = tracker
        self.policy = policy or FailoverPolicy()

    async def generate_with_fallback(self, request: GenerationRequest) -> FailoverResult:
        """Generate an image, falling back node by node.

        Args:
            request: The generation request (its token covers every attempt).

        Returns:
            FailoverResult with the winning node and the attempt order.

        Raises:
            CancellationError: As soon as the token fires. No further node is tried.
            ValidationError: If there are no candidate nodes.
            ImageGenerationError: The last node's error once every node failed.
        """
        candidates = self.policy.order(self.registry.enabled())
        if not candidates:
            raise ValidationError("No API nodes available")

        attempts: list[str] = []
        last_error: Exception | None = None

        for node in candidates:
            if request.token is not None:
                request.token.raise_if_cancelled()

            attempts.append(node.id)
            try:
                adapter = self.adapters.get(node)
                image_url = await adapter.generate(request)
            except CancellationError:
                logger.info(f"Generation cancelled during {node.name}")
                raise
            except Exception as e:
                logger.warning(f"Node {node.name} failed: {e}")
                self.tracker.mark_failed(node.id)
                last_error = e
                continue

            logger.debug(f"Image generated by {node.name} after {len(attempts)} attempt(s)")
            return FailoverResult(image_url=image_url, node=node, attempts=attempts)

        logger.error(f"All {len(candidates)} node(s) failed")
        if last_error is None:
            raise ValidationError("No API nodes available")
        raise last_error
