"""
Image optimizer for AI calls.

Downscales photos to a fixed maximum width and recompresses them as JPEG
before they are sent to the vision model.
"""

import asyncio
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger
from PIL import Image


def _is_remote(uri: str) -> bool:
    return uri.startswith("http://") or uri.startswith("https://")


def _local_path(uri: str) -> Path:
    return Path(uri[len("file://"):] if uri.startswith("file://") else uri)


class ImageOptimizer:
    """Loads images from local paths or URLs and prepares them for the vision model."""

    def __init__(
        self,
        max_width: int = 512,
        jpeg_quality: int = 85,
        work_dir: str = "/tmp/wardrobe-extraction",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: int = 30,
    ):
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality
        self.work_dir = Path(work_dir)
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def read_bytes(self, uri: str) -> bytes:
        """Load raw image data from a local path, ``file://`` URI or http(s) URL."""
        if _is_remote(uri):
            response = await self.http_client.get(uri)
            response.raise_for_status()
            return response.content
        return await asyncio.to_thread(_local_path(uri).read_bytes)

    async def optimize_for_ai(self, uri: str) -> str:
        """
        Produce a downscaled JPEG copy of an image.

        Returns:
            Local path of the optimized copy, or the original URI when
            optimization fails
        """
        try:
            data = await self.read_bytes(uri)
            return await asyncio.to_thread(self._resize_to_file, data)
        except Exception as e:
            logger.warning("Image optimization failed, using original", uri=uri, error=str(e))
            return uri

    def _resize_to_file(self, data: bytes) -> str:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.work_dir / f"ai_{uuid.uuid4().hex}.jpg"

        with Image.open(BytesIO(data)) as img:
            img = img.convert("RGB")
            if img.width > self.max_width:
                height = max(1, round(img.height * self.max_width / img.width))
                img = img.resize((self.max_width, height), Image.LANCZOS)
            img.save(output_path, format="JPEG", quality=self.jpeg_quality)

        return str(output_path)

    def discard(self, path: str, original_uri: str) -> None:
        """Delete an optimized copy unless it is the original itself."""
        if path == original_uri or _is_remote(path):
            return
        try:
            _local_path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete optimized image", path=path, error=str(e))

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
