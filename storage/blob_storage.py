"""
Durable blob storage for the nutrition cache and the per-date menu artifacts.

Both adapters expose the same async contract:
    exists(name) -> bool
    get(name) -> bytes           (raises BlobNotFoundError)
    put(name, data, content_type=..., upsert=...)   (raises StorageError)
"""
import logging
from pathlib import Path
from typing import Optional

import httpx

from services.exceptions import BlobNotFoundError, StorageError

logger = logging.getLogger(__name__)


class BlobStorage:
    """Contract shared by every storage backend"""

    async def exists(self, name: str) -> bool:
        raise NotImplementedError

    async def get(self, name: str) -> bytes:
        raise NotImplementedError

    async def put(
        self,
        name: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = True
    ) -> None:
        raise NotImplementedError


class LocalBlobStorage(BlobStorage):
    """Blob storage backed by a local directory, one file per blob"""

    def __init__(self, data_directory: str = "storage/data"):
        self.data_directory = Path(data_directory)
        self.data_directory.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.data_directory / name

    async def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    async def get(self, name: str) -> bytes:
        file_path = self._path(name)
        if not file_path.is_file():
            raise BlobNotFoundError(name)
        try:
            return file_path.read_bytes()
        except OSError as e:
            raise StorageError(name, str(e)) from e

    async def put(
        self,
        name: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = True
    ) -> None:
        file_path = self._path(name)
        if file_path.exists() and not upsert:
            raise StorageError(name, "object already exists")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)
        except OSError as e:
            raise StorageError(name, str(e)) from e
        logger.debug(f"Wrote {len(data)} bytes to {file_path}")


class SupabaseBlobStorage(BlobStorage):
    """Blob storage backed by a Supabase Storage bucket over its REST API"""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        bucket: str = "menus",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.base_url = url.rstrip("/") + "/storage/v1"
        self.bucket = bucket
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }
        self._client = client
        self.timeout = timeout

    def _object_url(self, prefix: str, name: str) -> str:
        return f"{self.base_url}/{prefix}/{self.bucket}/{name}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self.headers, **kwargs.pop("headers", {})}
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def exists(self, name: str) -> bool:
        # A signed URL can only be created for an existing object
        try:
            response = await self._request(
                "POST",
                self._object_url("object/sign", name),
                json={"expiresIn": 60}
            )
        except httpx.HTTPError as e:
            logger.error(f"Error checking if file {name} exists: {str(e)}")
            return False
        return response.status_code == 200

    async def get(self, name: str) -> bytes:
        try:
            response = await self._request("GET", self._object_url("object", name))
        except httpx.HTTPError as e:
            raise StorageError(name, str(e)) from e

        # Supabase answers 400 with "Object not found" for missing keys
        if response.status_code in (400, 404):
            raise BlobNotFoundError(name)
        if response.status_code != 200:
            raise StorageError(name, f"HTTP {response.status_code}: {response.text[:200]}")
        return response.content

    async def put(
        self,
        name: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = True
    ) -> None:
        try:
            response = await self._request(
                "POST",
                self._object_url("object", name),
                content=data,
                headers={
                    "Content-Type": content_type,
                    "x-upsert": "true" if upsert else "false",
                }
            )
        except httpx.HTTPError as e:
            raise StorageError(name, str(e)) from e

        if response.status_code not in (200, 201):
            raise StorageError(name, f"HTTP {response.status_code}: {response.text[:200]}")
