"""Sketch upload storage for SoulCanvas.

Publishes sketches so URL-only backends can fetch them.

Examples:
    >>> from soulcanvas.storage import S3Config, S3Uploader
    >>> uploader = S3Uploader(S3Config.from_settings(settings))
    >>> url = await uploader.upload(sketch_data_url)
"""

from soulcanvas.storage.config import S3Config
from soulcanvas.storage.uploader import ImageUploader, S3Uploader, parse_data_url

__all__ = [
    "ImageUploader",
    "S3Config",
    "S3Uploader",
    "parse_data_url",
]
