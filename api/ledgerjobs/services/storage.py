"""
Object storage client for attachment and inbox files.

Files are referenced either by a full URL or by path segments whose last
element is an UploadThing file key. ``fetch`` tries the direct URL first and
falls back to resolving the key through the UploadThing API. Every fetch is
raced against ``file_retrieval_timeout``.
"""
import asyncio
import logging

import httpx

from ledgerjobs.core.config import settings
from ledgerjobs.core.errors import StorageError, StorageTimeoutError, TransientStorageError

logger = logging.getLogger(__name__)


def join_path(path: str | list[str]) -> str:
    return "/".join(path) if isinstance(path, list) else path


def validate_path(path: str) -> None:
    """
    Reject paths with empty, traversal ('..') or percent-encoded segments.

    A leading http(s) scheme is allowed; any other '//' shows up as an
    empty segment.
    """
    _, sep, rest = path.partition("://")
    segments = (rest if sep else path).split("/")
    if any(not s or ".." in s or "%" in s for s in segments):
        raise StorageError(f"Invalid path components detected: {path}")


class ObjectStorage:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ):
        self.client = client
        self.api_key = settings.uploadthing_api_key if api_key is None else api_key
        self.api_url = (api_url or settings.uploadthing_api_url).rstrip("/")
        self.timeout = settings.file_retrieval_timeout if timeout is None else timeout

    async def fetch(self, path: str | list[str]) -> bytes:
        """Return the file content. Raises StorageError (StorageTimeoutError on timeout)."""
        full_path = join_path(path)
        if not full_path:
            raise StorageError("Empty file path")
        validate_path(full_path)
        try:
            return await asyncio.wait_for(self._fetch(full_path), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StorageTimeoutError(f"File retrieval timed out after {self.timeout:g}s: {full_path}") from exc

    async def _fetch(self, path: str) -> bytes:
        if path.startswith("http"):
            try:
                content = await self._get(path)
                logger.debug("Retrieved %d bytes via direct fetch: %s", len(content), path)
                return content
            except (StorageError, TransientStorageError) as exc:
                logger.warning("Direct fetch failed, resolving by key: %s (%s)", path, exc)

        key = path.rstrip("/").split("/")[-1]
        if not key:
            raise StorageError(f"Invalid file key extracted from path: {path}")

        url = await self.resolve_url(key)
        content = await self._get(url)
        logger.debug("Retrieved %d bytes via file key %s", len(content), key)
        return content

    async def _get(self, url: str) -> bytes:
        try:
            resp = await self.client.get(url)
        except httpx.TransportError as exc:
            raise TransientStorageError(f"Storage connection failed for {url}: {exc}") from exc
        if resp.status_code != 200:
            raise StorageError(f"HTTP error: {resp.status_code} {resp.reason_phrase}")
        return resp.content

    async def resolve_url(self, key: str) -> str:
        """Ask UploadThing for a download URL for ``key``."""
        if not self.api_key:
            raise StorageError("UploadThing API key is not configured")
        try:
            resp = await self.client.post(
                f"{self.api_url}/v6/getFileUrl",
                json={"fileKeys": [key]},
                headers={"X-Uploadthing-Api-Key": self.api_key},
            )
        except httpx.TransportError as exc:
            raise TransientStorageError(f"UploadThing connection failed: {exc}") from exc
        if resp.status_code != 200:
            raise StorageError(f"UploadThing returned {resp.status_code} for key {key}")

        data = resp.json().get("data") or []
        if not data or not data[0].get("url"):
            raise StorageError(f"File not found in UploadThing: {key}")
        return data[0]["url"]
