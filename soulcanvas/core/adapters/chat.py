"""Chat completions adapter (single-shot image generation).

Sends the sketch and the final prompt as one multi-part user message to an
OpenAI-compatible /chat/completions endpoint with image output enabled
(OpenRouter and compatible gateways), and extracts the generated image from
whichever shape the model answered with.

OpenRouter API docs: https://openrouter.ai/docs

Examples:
    >>> adapter = ChatCompletionsAdapter(node, api_key="sk-or-v1-...")
    >>> url = await adapter.generate(
    ...     GenerationRequest(sketch="data:image/png;base64,...", style_prompt="watercolor")
    ... )

Tests:
    - tests/unit/test_chat_adapter.py
"""

from __future__ import annotations

import logging
import re
from typing import Any

from soulcanvas.core.adapters.base import GenerationRequest, ImageAdapter
from soulcanvas.core.cancellation import CancellationToken
from soulcanvas.core.errors import APIError, classify_status, is_retryable
from soulcanvas.core.nodes import Node, NodeMode
from soulcanvas.core.retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_TOKENS = 4096
TEMPERATURE = 1.2
PREVIEW_LENGTH = 100

APP_HEADERS = {
    "HTTP-Referer": "https://soul-canvas.app",
    "X-Title": "SoulCanvas AI",
}

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[.*?\]\((.*?)\)")
EMBEDDED_URL_PATTERN = re.compile(r"https?://[^\s\"']+\.(?:png|jpg|jpeg|webp|gif)", re.IGNORECASE)
EMBEDDED_DATA_URI_PATTERN = re.compile(
    r"data:image/(?:png|jpeg|jpg|webp|gif);base64,[A-Za-z0-9+/=]+",
    re.IGNORECASE,
)


def _image_part_url(part: Any) -> str | None:
    if isinstance(part, dict):
        image_url = part.get("image_url")
        if isinstance(image_url, dict) and image_url.get("url"):
            return image_url["url"]
    return None


def extract_image_reference(data: dict[str, Any], node_id: str | None = None) -> str:
    """Extract the generated image URL from a chat completions body.

    Tried in order:
        1. message.images[0].image_url.url
        2. first content-array part of type "image_url"
        3. plain-text content: a bare URL/data URI, a markdown image,
           an embedded image URL, an embedded base64 data URI

    Args:
        data: Parsed response body.
        node_id: Node id for error attribution.

    Returns:
        The image URL or data URI.

    Raises:
        APIError: If no image can be found.
    """
    choices = data.get("choices")
    message = None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
    if not isinstance(message, dict):
        raise APIError("Malformed response: no message in choices", node_id=node_id)

    images = message.get("images")
    if isinstance(images, list) and images:
        url = _image_part_url(images[0])
        if url:
            return url

    content = message.get("content")

    if isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "image_url":
                url = _image_part_url(part)
                if url:
                    return url
        raise APIError("No image found in response content", node_id=node_id)

    if isinstance(content, str):
        text = content.strip()

        if text.startswith(("http", "data:image")):
            return text

        markdown_match = MARKDOWN_IMAGE_PATTERN.search(text)
        if markdown_match and markdown_match.group(1):
            return markdown_match.group(1)

        url_match = EMBEDDED_URL_PATTERN.search(text)
        if url_match:
            return url_match.group(0)

        data_uri_match = EMBEDDED_DATA_URI_PATTERN.search(text)
        if data_uri_match:
            return data_uri_match.group(0)

        reasoning = message.get("reasoning")
        if reasoning:
            logger.debug(f"Model reasoning without image: {str(reasoning)[:500]}")

        raise APIError(
            f"Model returned text but no image was detected. "
            f"Response preview: {text[:PREVIEW_LENGTH]}...",
            node_id=node_id,
        )

    raise APIError("Unable to parse response: no image data", node_id=node_id)


class ChatCompletionsAdapter(ImageAdapter):
    """Single-shot image generation over /chat/completions.

    Each HTTP attempt is bounded by the request timeout; transient failures
    (5xx, 429, timeouts, connection errors) are retried with exponential
    backoff before the node is given up on.

    Attributes:
        retry_policy: Backoff settings for transient failures
    """

    mode = NodeMode.SYNC

    def __init__(self, *args: Any, retry_policy: RetryPolicy | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(
        cls, node: Node, api_key: str, settings: Any, **kwargs: Any
    ) -> "ChatCompletionsAdapter":
        """Create the adapter with timeouts and retry policy from settings."""
        kwargs.pop("uploader", None)
        kwargs.setdefault("retry_policy", RetryPolicy.from_settings(settings))
        return super().from_settings(node, api_key, settings, **kwargs)

    def default_headers(self) -> dict[str, str]:
        """Bearer auth plus app attribution headers."""
        return {
            **super().default_headers(),
            **APP_HEADERS,
            "Content-Type": "application/json",
        }

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        """Build the chat completions request body."""
        return {
            "model": self.node.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": request.sketch, "detail": "auto"},
                        },
                        {"type": "text", "text": self.build_prompt(request)},
                    ],
                }
            ],
            "modalities": ["image", "text"],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "stream": False,
        }

    async def generate(self, request: GenerationRequest) -> str:
        """Generate an image, retrying transient failures.

        Raises:
            NetworkError: If transient failures outlast the retry budget.
            APIError: On non-retryable responses or when no image is returned.
            CancellationError: If the request token fires.
        """
        payload = self.build_payload(request)
        return await self.retry_policy.run(
            lambda: self._complete(payload, request.token),
            should_retry=is_retryable,
            on_retry=self._log_retry,
            token=request.token,
        )

    def _log_retry(self, attempt: int, delay: float, error: Exception) -> None:
        logger.warning(
            f"{self.node.name} request failed, retrying "
            f"({attempt}/{self.retry_policy.max_retries}) in {delay:.1f}s: {error}"
        )

    async def _complete(self, payload: dict[str, Any], token: CancellationToken | None) -> str:
        """One POST to /chat/completions, classified and parsed."""
        response = await self.send("POST", "/chat/completions", token, json=payload)

        if not response.is_success:
            raise classify_status(
                response.status_code,
                response.text,
                node_id=self.node.id,
                action="Image generation failed",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(
                f"Malformed response body: {response.text[:PREVIEW_LENGTH]}",
                node_id=self.node.id,
            ) from e

        if not isinstance(data, dict):
            raise APIError("Malformed response body: expected a JSON object", node_id=self.node.id)

        error = data.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise APIError(f"Image generation error: {message}", node_id=self.node.id)

        return extract_image_reference(data, node_id=self.node.id)
