"""Core components for SoulCanvas image generation."""

from soulcanvas.core.cancellation import CancellationToken
from soulcanvas.core.errors import (
    APIError,
    CancellationError,
    ImageGenerationError,
    NetworkError,
    TaskTimeoutError,
    ValidationError,
)
from soulcanvas.core.failover import FailoverOrchestrator, FailoverPolicy, FailoverResult
from soulcanvas.core.health import HealthTracker, NodeHealth, SelectionStrategy
from soulcanvas.core.nodes import Node, NodeMode, NodeRegistry
from soulcanvas.core.retry import RetryPolicy, with_retry

__all__ = [
    "APIError",
    "CancellationError",
    "CancellationToken",
    "FailoverOrchestrator",
    "FailoverPolicy",
    "FailoverResult",
    "HealthTracker",
    "ImageGenerationError",
    "NetworkError",
    "Node",
    "NodeHealth",
    "NodeMode",
    "NodeRegistry",
    "RetryPolicy",
    "SelectionStrategy",
    "TaskTimeoutError",
    "ValidationError",
    "with_retry",
]
