"""Node health tracking and advisory node selection.

The tracker keeps one NodeHealth record per node in a TTL-bounded cache,
refreshed by probing every enabled node concurrently. select_node() reads the
cache and picks a node by strategy:

- priority: ascending priority number
- latency: ascending cached latency (unknown counts as infinite)
- round-robin: cyclic over the healthy set, cursor kept for the tracker's life

A node is healthy when it answered its last probe and has fewer consecutive
failures than the threshold. When nothing is healthy the highest-priority
enabled node is returned anyway (degraded mode).

Health is advisory: the failover path does not consult it
(see soulcanvas.core.failover.FailoverPolicy).

Examples:
    >>> tracker = HealthTracker(registry, adapters, strategy=SelectionStrategy.LATENCY)
    >>> node = await tracker.select_node()
    >>> tracker.mark_failed(node.id)

Tests:
    - tests/unit/test_health.py
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from soulcanvas.core.adapters import AdapterPool
from soulcanvas.core.errors import ValidationError
from soulcanvas.core.nodes import Node, NodeRegistry

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_FAILURE_THRESHOLD = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SelectionStrategy(str, Enum):
    """Advisory node selection strategy."""

    PRIORITY = "priority"
    LATENCY = "latency"
    ROUND_ROBIN = "round-robin"


class NodeHealth(BaseModel):
    """Last known health of one node.

    Attributes:
        node_id: The node this record belongs to
        latency_ms: Probe round-trip latency (inf when unknown or failed)
        is_available: Whether the last probe succeeded
        last_checked: When the record was last updated
        consecutive_failures: Failures since the last success
    """

    node_id: str
    latency_ms: float = math.inf
    is_available: bool = False
    last_checked: datetime = Field(default_factory=utc_now)
    consecutive_failures: int = Field(default=0, ge=0)


class HealthTracker:
    """TTL-bounded health cache with strategy-based node selection.

    Attributes:
        registry: Node registry
        adapters: Adapter pool used for probes
        ttl: Seconds a record stays fresh
        failure_threshold: Consecutive failures that exclude a node from selection
        probe_timeout: Upper bound for a single probe (seconds)
        strategy: Default selection strategy
    """

    def __init__(
        self,
        registry: NodeRegistry,
        adapters: AdapterPool,
        ttl: float = DEFAULT_TTL,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        probe_timeout: float = 5.0,
        strategy: SelectionStrategy = SelectionStrategy.PRIORITY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.adapters = adapters
        self.ttl = ttl
        self.failure_threshold = failure_threshold
        self.probe_timeout = probe_timeout
        self.strategy = SelectionStrategy(strategy)
        self.clock = clock
        self._records: dict[str, NodeHealth] = {}
        self._cursor = 0

    @classmethod
    def from_settings(
        cls, registry: NodeRegistry, adapters: AdapterPool, settings: Any
    ) -> "HealthTracker":
        """Create a tracker using TTL, threshold and strategy from settings."""
        return cls(
            registry,
            adapters,
            ttl=settings.HEALTH_CACHE_TTL,
            failure_threshold=settings.FAILOVER_THRESHOLD,
            probe_timeout=settings.HEALTH_CHECK_TIMEOUT,
            strategy=SelectionStrategy(settings.NODE_SELECTION_STRATEGY),
        )

    def get(self, node_id: str) -> NodeHealth | None:
        """Get the cached record for a node."""
        return self._records.get(node_id)

    def snapshot(self) -> dict[str, NodeHealth]:
        """Copy of every cached record, keyed by node id."""
        return {node_id: record.model_copy() for node_id, record in self._records.items()}

    def reset(self) -> None:
        """Drop all records and the round-robin cursor."""
        self._records.clear()
        self._cursor = 0

    def is_stale(self, record: NodeHealth | None) -> bool:
        """Check if a record is missing or older than the TTL."""
        if record is None:
            return True
        return self.clock() - record.last_checked > timedelta(seconds=self.ttl)

    def needs_refresh(self) -> bool:
        """Check if any enabled node's record is missing or stale."""
        return any(self.is_stale(self._records.get(node.id)) for node in self.registry.enabled())

    async def probe_node(self, node: Node) -> NodeHealth:
        """Probe one node and store the result.

        A failed probe never raises: the node is recorded as unavailable with
        infinite latency and its failure count goes up by one.
        """
        try:
            adapter = self.adapters.get(node)
            latency_ms = await asyncio.wait_for(adapter.probe(), timeout=self.probe_timeout)
        except Exception as e:
            # read after the await so a concurrent mark_failed() is kept
            previous = self._records.get(node.id)
            failures = (previous.consecutive_failures if previous else 0) + 1
            logger.warning(f"Health check failed for {node.name}: {e}")
            record = NodeHealth(
                node_id=node.id,
                latency_ms=math.inf,
                is_available=False,
                last_checked=self.clock(),
                consecutive_failures=failures,
            )
        else:
            logger.debug(f"{node.name} healthy ({latency_ms:.0f}ms)")
            record = NodeHealth(
                node_id=node.id,
                latency_ms=latency_ms,
                is_available=True,
                last_checked=self.clock(),
                consecutive_failures=0,
            )
        self._records[node.id] = record
        return record

    async def probe_all(self) -> dict[str, NodeHealth]:
        """Probe every enabled node concurrently.

        Returns:
            The fresh records keyed by node id.
        """
        nodes = self.registry.enabled()
        records = await asyncio.gather(*(self.probe_node(node) for node in nodes))
        return {record.node_id: record for record in records}

    def mark_failed(self, node_id: str) -> NodeHealth:
        """Record a generation failure for a node, independent of any probe."""
        previous = self._records.get(node_id)
        if previous is None:
            record = NodeHealth(
                node_id=node_id,
                is_available=False,
                last_checked=self.clock(),
                consecutive_failures=1,
            )
        else:
            record = previous.model_copy(
                update={
                    "is_available": False,
                    "consecutive_failures": previous.consecutive_failures + 1,
                }
            )
        self._records[node_id] = record
        logger.warning(
            f"Node {node_id} marked failed "
            f"({record.consecutive_failures} consecutive failure(s))"
        )
        return record

    def is_healthy(self, node: Node) -> bool:
        """Check if a node passes the availability and failure-threshold filter."""
        record = self._records.get(node.id)
        if record is None:
            return True
        return record.is_available and record.consecutive_failures < self.failure_threshold

    async def select_node(self, strategy: SelectionStrategy | str | None = None) -> Node:
        """Pick a node for a request (advisory).

        Args:
            strategy: Selection strategy, defaults to the tracker's strategy.

        Returns:
            The selected node.

        Raises:
            ValidationError: If no node is enabled.
        """
        strategy = SelectionStrategy(strategy) if strategy is not None else self.strategy

        if not self.registry.enabled():
            raise ValidationError("No API nodes available")

        if self.needs_refresh():
            await self.probe_all()

        # No await below: the decision uses one consistent view of the cache
        enabled = self.registry.enabled()
        healthy = [node for node in enabled if self.is_healthy(node)]

        if not healthy:
            fallback = enabled[0]
            logger.warning(f"No healthy nodes, falling back to {fallback.name} (degraded mode)")
            return fallback

        if strategy == SelectionStrategy.LATENCY:
            return min(healthy, key=self._latency)

        if strategy == SelectionStrategy.ROUND_ROBIN:
            node = healthy[self._cursor % len(healthy)]
            self._cursor += 1
            return node

        return healthy[0]

    def _latency(self, node: Node) -> float:
        record = self._records.get(node.id)
        return record.latency_ms if record is not None else math.inf
