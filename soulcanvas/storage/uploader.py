"""Sketch uploaders: publish a sketch and return a publicly reachable URL.

The async job backend only accepts image URLs, so sketches (base64 data URLs)
are uploaded to S3-compatible storage first.

Examples:
    >>> uploader = S3Uploader(S3Config.from_settings(settings))
    >>> url = await uploader.upload("data:image/png;base64,iVBORw0...")
    'https://bucket.s3.us-east-1.amazonaws.com/soul-canvas/1760000000000-a1b2c3.png'
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod

import httpx
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.config import Config
from botocore.credentials import Credentials

from soulcanvas.core.errors import NetworkError, ValidationError, classify_status
from soulcanvas.storage.config import S3Config

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:(image/(jpeg|png|webp));base64,(.+)$", re.DOTALL)
KEY_PREFIX = "soul-canvas"


def parse_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a base64 image data URL into MIME type and raw bytes.

    Args:
        data_url: ``data:image/<png|jpeg|webp>;base64,...``

    Returns:
        Tuple of (mime_type, image_bytes).

    Raises:
        ValidationError: For unsupported formats or invalid base64.
    """
    match = DATA_URL_PATTERN.match(data_url.strip())
    if not match:
        raise ValidationError("Unsupported image format. Only JPEG, PNG and WebP data URLs are accepted")
    try:
        data = base64.b64decode(match.group(3), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image data: {e}") from e
    return match.group(1), data


class ImageUploader(ABC):
    """Abstract uploader for sketches."""

    @abstractmethod
    async def upload(self, data_url: str) -> str:
        """Upload a sketch and return its public URL.

        Args:
            data_url: Base64 image data URL.

        Returns:
            Publicly reachable URL of the uploaded image.
        """

    async def close(self) -> None:
        """Release any held resources."""


def sign_put_request(
    url: httpx.URL,
    content_type: str,
    body: bytes,
    config: S3Config,
) -> dict[str, str]:
    """Create AWS Signature V4 headers for an S3 PUT request.

    Signing is delegated to botocore; the request itself is still sent with
    httpx.

    Args:
        url: Full object URL.
        content_type: Object MIME type.
        body: Object bytes.
        config: S3 configuration with credentials.

    Returns:
        Headers to send with the request (Content-Type, X-Amz-Date,
        X-Amz-Content-SHA256, Authorization).
    """
    request = AWSRequest(
        method="PUT",
        url=str(url),
        data=body,
        headers={"Content-Type": content_type},
    )
    # sign the body hash even over https
    request.context["client_config"] = Config(s3={"payload_signing_enabled": True})
    credentials = Credentials(config.access_key_id, config.secret_access_key)
    S3SigV4Auth(credentials, "s3", config.region).add_auth(request)
    return dict(request.headers.items())


class S3Uploader(ImageUploader):
    """Upload sketches to S3 (or an S3-compatible service) with signed PUTs.

    Attributes:
        config: S3 configuration.
        timeout: Upload timeout in seconds.
    """

    def __init__(
        self,
        config: S3Config,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def object_key(mime_type: str) -> str:
        """Generate a unique object key for an image."""
        ext = mime_type.split("/")[1] if "/" in mime_type else "png"
        return f"{KEY_PREFIX}/{int(time.time() * 1000)}-{secrets.token_hex(3)}.{ext}"

    async def upload(self, data_url: str) -> str:
        """Upload a sketch data URL and return its public URL.

        Raises:
            ValidationError: If the data URL is not a supported image.
            NetworkError: On transport failures or 5xx/429 responses.
            APIError: On other non-2xx responses.
        """
        mime_type, body = parse_data_url(data_url)
        key = self.object_key(mime_type)
        url = httpx.URL(f"{self.config.upload_base_url}/{key}")

        headers = sign_put_request(url, mime_type, body, self.config)

        try:
            response = await self.client.put(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"S3 upload failed: {e}")
            raise NetworkError(f"S3 upload failed: {e}") from e

        if not response.is_success:
            logger.error(f"S3 upload rejected: {response.status_code}")
            raise classify_status(response.status_code, response.text, action="S3 upload failed")

        public_url = f"{self.config.public_base_url}/{key}"
        logger.debug(f"Uploaded sketch to {public_url}")
        return public_url
