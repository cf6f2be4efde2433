"""Sketch upload storage configuration model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class S3Config(BaseModel):
    """Configuration for S3-compatible sketch storage.

    Attributes:
        region: Bucket region (used for request signing).
        bucket: Bucket name.
        access_key_id: Access key id.
        secret_access_key: Secret access key.
        endpoint: Optional endpoint for S3-compatible services.
        public_url: Optional public URL prefix for uploaded objects.
    """

    region: str = Field(min_length=1)
    bucket: str = Field(min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)
    endpoint: str | None = Field(default=None, description="S3-compatible endpoint")
    public_url: str | None = Field(default=None, description="Public URL prefix")

    @classmethod
    def from_settings(cls, settings: Any) -> S3Config | None:
        """Build the config from settings, or None when incomplete."""
        if not settings.s3_configured:
            return None
        return cls(
            region=settings.S3_REGION,
            bucket=settings.S3_BUCKET,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            endpoint=settings.S3_ENDPOINT or None,
            public_url=settings.S3_PUBLIC_URL or None,
        )

    @property
    def upload_base_url(self) -> str:
        """Base URL objects are PUT to (bucket included)."""
        if self.endpoint:
            endpoint = self.endpoint.rstrip("/")
            if not endpoint.startswith(("http://", "https://")):
                endpoint = f"https://{endpoint}"
            return f"{endpoint}/{self.bucket}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"

    @property
    def public_base_url(self) -> str:
        """Base URL returned to callers for uploaded objects."""
        if self.public_url:
            return self.public_url.rstrip("/")
        return self.upload_base_url
