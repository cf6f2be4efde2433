"""Error taxonomy for image generation.

Every failure raised by the adapters, the retry executor and the failover
orchestrator is an ImageGenerationError. The subclass decides how the error
travels:

- NetworkError: transient (5xx, 429, timeouts, connection failures).
  Retried inside a node, then fails over to the next node.
- APIError: non-retryable (other 4xx, malformed bodies, missing image).
  Fails over to the next node without retrying.
- TaskTimeoutError: an async job that never finished. Fails over like a
  NetworkError.
- ValidationError: configuration problems (missing credentials, no
  uploader, unknown node).
- CancellationError: the caller gave up. Never retried, never fails over.

Examples:
    >>> error = NetworkError("Server error", node_id="openrouter", status_code=503)
    >>> str(error)
    '[openrouter] (503) Server error'
    >>> is_retryable(error)
    True

Tests:
    - tests/unit/test_errors.py
"""

from __future__ import annotations

__all__ = [
    "APIError",
    "CancellationError",
    "ImageGenerationError",
    "NetworkError",
    "TaskTimeoutError",
    "ValidationError",
    "classify_status",
    "is_retryable",
]


class ImageGenerationError(Exception):
    """Base exception for image generation errors.

    Attributes:
        node_id: The node that raised the error (if known)
        message: Error message
        status_code: HTTP status code (if applicable)
        retryable: Whether retrying the same node may help
    """

    default_retryable = False

    def __init__(
        self,
        message: str,
        node_id: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.status_code = status_code
        self.retryable = self.default_retryable if retryable is None else retryable

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [self.message]
        if self.status_code:
            parts.insert(0, f"({self.status_code})")
        if self.node_id:
            parts.insert(0, f"[{self.node_id}]")
        return " ".join(parts)


class ValidationError(ImageGenerationError):
    """Missing or invalid configuration (credentials, uploader, node id)."""


class NetworkError(ImageGenerationError):
    """Transient failure: retrying may help."""

    default_retryable = True


class APIError(ImageGenerationError):
    """Non-retryable failure reported by (or parsed from) a backend."""


class TaskTimeoutError(ImageGenerationError):
    """An async generation task did not reach a terminal state in time.

    Attributes:
        task_id: The provider task identifier
        elapsed: Seconds spent polling before giving up
    """

    default_retryable = True

    def __init__(self, task_id: str, elapsed: float, node_id: str | None = None) -> None:
        super().__init__(
            f"Task {task_id} timed out after {elapsed:.1f}s",
            node_id=node_id,
        )
        self.task_id = task_id
        self.elapsed = elapsed


class CancellationError(ImageGenerationError):
    """The request was cancelled by the caller."""

    def __init__(self, message: str = "Request cancelled", node_id: str | None = None) -> None:
        super().__init__(message, node_id=node_id, retryable=False)


def is_retryable(error: BaseException) -> bool:
    """Check whether an error should be retried on the same node.

    Args:
        error: The raised exception.

    Returns:
        True for retryable ImageGenerationErrors that are not cancellations.
    """
    if isinstance(error, CancellationError):
        return False
    return isinstance(error, ImageGenerationError) and error.retryable


def classify_status(
    status_code: int,
    body: str = "",
    node_id: str | None = None,
    action: str = "Request failed",
) -> ImageGenerationError:
    """Convert a non-2xx HTTP status into the matching error.

    Args:
        status_code: The HTTP status code.
        body: Response body text (included in the message).
        node_id: The node that answered.
        action: Short description of the failed operation.

    Returns:
        NetworkError for 5xx and 429, APIError for everything else.
    """
    message = f"{action}: {status_code}"
    if body:
        message += f" - {body[:500]}"
    if status_code >= 500 or status_code == 429:
        return NetworkError(message, node_id=node_id, status_code=status_code)
    return APIError(message, node_id=node_id, status_code=status_code)
