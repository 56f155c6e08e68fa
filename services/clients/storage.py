"""
Object storage client.

Talks to a Supabase-compatible storage REST API over httpx: objects are
uploaded into buckets and served from public URLs of the form
``{storage_url}/storage/v1/object/public/{bucket}/{path}``.
"""

import re
from typing import Optional

import httpx
from loguru import logger

from shared.errors import AuthenticationRequiredError, StorageError
from shared.schemas import StorageConfig


class StorageClient:
    """Async client for bucket uploads, public URLs and deletes."""

    def __init__(self, config: StorageConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.base_url = config.url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)

    def _headers(self, content_type: Optional[str] = None) -> dict[str, str]:
        headers = {}
        if self.config.service_key:
            headers["Authorization"] = f"Bearer {self.config.service_key}"
            headers["apikey"] = self.config.service_key
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code in (401, 403):
            raise AuthenticationRequiredError(
                f"Storage {action} rejected: {response.status_code} - {response.text}"
            )
        if response.status_code >= 400:
            raise StorageError(f"Storage {action} failed: {response.status_code} - {response.text}")

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/jpeg"
    ) -> str:
        """
        Upload bytes to ``bucket/path``, overwriting an existing object.

        Returns:
            The public URL of the stored object
        """
        url = f"{self.base_url}/storage/v1/object/{bucket}/{path}"
        headers = self._headers(content_type)
        headers["x-upsert"] = "true"

        try:
            response = await self.http_client.post(url, content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StorageError(f"Storage upload failed: {str(e)}") from e

        self._raise_for_status(response, "upload")
        logger.debug("Object uploaded", bucket=bucket, path=path, size_bytes=len(data))
        return self.get_public_url(bucket, path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    @staticmethod
    def path_from_public_url(bucket: str, public_url: str) -> Optional[str]:
        """Map a public URL back to its object path inside ``bucket``."""
        match = re.search(rf"{re.escape(bucket)}/(.+)$", public_url)
        return match.group(1) if match else None

    async def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete objects from a bucket."""
        if not paths:
            return
        url = f"{self.base_url}/storage/v1/object/{bucket}"

        try:
            response = await self.http_client.request(
                "DELETE", url, json={"prefixes": paths}, headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage delete failed: {str(e)}") from e

        self._raise_for_status(response, "delete")
        logger.debug("Objects removed", bucket=bucket, count=len(paths))

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
