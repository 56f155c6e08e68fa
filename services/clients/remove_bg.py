"""remove.bg HTTP API client."""

from typing import Optional

import httpx
from loguru import logger

from shared.errors import BackgroundRemovalError, ConfigurationError

REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"


class RemoveBgClient:
    """Removes image backgrounds through the remove.bg API."""

    name = "remove.bg"

    def __init__(
        self,
        api_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: int = 30,
        api_url: str = REMOVE_BG_URL,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your_api_key_here"

    async def remove_background(self, image_url: str) -> bytes:
        """
        Remove the background of a publicly reachable image.

        Args:
            image_url: Public URL of the image

        Returns:
            The processed image as PNG bytes
        """
        if not self.is_configured():
            raise ConfigurationError("Background removal not configured")

        form = {
            "image_url": image_url,
            "size": "auto",
            "format": "png",
            "type": "product",
        }
        try:
            response = await self.http_client.post(
                self.api_url, data=form, headers={"X-Api-Key": self.api_key}
            )
        except httpx.HTTPError as e:
            raise BackgroundRemovalError(f"Remove.bg request failed: {str(e)}") from e

        if response.status_code >= 400:
            logger.error(
                "Remove.bg API error",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise BackgroundRemovalError(f"Remove.bg error: {response.status_code} - {response.text}")

        logger.debug("Background removal successful", size_bytes=len(response.content))
        return response.content

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
