"""
Document storage backed by a Supabase Storage bucket.

Provides:
- StorageService: signed upload/download URLs, existence checks, downloads
  and removal for objects in the documents bucket
- ensure_bucket_exists: create the private bucket on startup if missing

The Supabase client is synchronous, so every call is pushed to a worker
thread with ``asyncio.to_thread``.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from app.config import settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the storage provider rejects or fails a request."""


@dataclasses.dataclass
class SignedUpload:
    """Target the client PUTs the file bytes to."""

    url: str
    token: str
    path: str


class StorageService:
    """
    Thin async wrapper around one Supabase storage bucket.

    The client is created lazily so the app can start (and tests can run)
    without storage credentials.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        bucket: Optional[str] = None,
    ) -> None:
        self._client = client
        self.bucket = bucket or settings.DOCUMENTS_BUCKET

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(
                settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY
            )
        return self._client

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    # ------------------------------------------------------------------
    # Bucket setup
    # ------------------------------------------------------------------

    async def ensure_bucket_exists(self) -> bool:
        """
        Create the documents bucket if it does not exist yet.

        Returns True when the bucket was created, False when it was already
        there.
        """
        try:
            buckets = await asyncio.to_thread(self.client.storage.list_buckets)
        except Exception as exc:
            raise StorageError(f"Failed to list storage buckets: {exc}") from exc

        if any(getattr(b, "name", None) == self.bucket for b in buckets or []):
            return False

        try:
            await asyncio.to_thread(
                self.client.storage.create_bucket,
                self.bucket,
                options={
                    "public": False,
                    "file_size_limit": settings.MAX_FILE_SIZE,
                    "allowed_mime_types": list(settings.ALLOWED_MIME_TYPES),
                },
            )
        except Exception as exc:
            logger.error("Failed to create documents bucket: %s", exc)
            raise StorageError(f"Failed to create bucket '{self.bucket}': {exc}") from exc

        logger.info("Created documents storage bucket '%s'", self.bucket)
        return True

    # ------------------------------------------------------------------
    # Object operations
    # ------------------------------------------------------------------

    async def create_signed_upload_url(self, path: str) -> SignedUpload:
        """Return a one-time signed URL the client can upload *path* to."""
        try:
            data: Dict[str, Any] = await asyncio.to_thread(
                self._bucket().create_signed_upload_url, path
            )
        except Exception as exc:
            raise StorageError(f"Failed to create upload URL: {exc}") from exc

        url = data.get("signed_url") or data.get("signedUrl")
        if not url:
            raise StorageError("Failed to create upload URL")
        return SignedUpload(
            url=url,
            token=data.get("token", ""),
            path=data.get("path", path),
        )

    async def exists(self, path: str) -> bool:
        """Check whether an object exists by searching its parent folder."""
        folder, _, name = path.rpartition("/")
        try:
            entries: List[Dict[str, Any]] = await asyncio.to_thread(
                self._bucket().list, folder, {"search": name}
            )
        except Exception as exc:
            logger.warning("Storage listing failed for %r: %s", path, exc)
            return False
        return any(entry.get("name") == name for entry in entries or [])

    async def download(self, path: str) -> bytes:
        try:
            data = await asyncio.to_thread(self._bucket().download, path)
        except Exception as exc:
            raise StorageError("Failed to download file from storage") from exc
        if not data:
            raise StorageError("Failed to download file from storage")
        return data

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        """Return a signed download URL valid for *expires_in* seconds."""
        try:
            data: Dict[str, Any] = await asyncio.to_thread(
                self._bucket().create_signed_url, path, expires_in
            )
        except Exception as exc:
            raise StorageError(f"Failed to create download URL: {exc}") from exc

        url = data.get("signedURL") or data.get("signedUrl") or data.get("signed_url")
        if not url:
            raise StorageError("Failed to create download URL")
        return url

    async def remove(self, paths: List[str]) -> None:
        try:
            await asyncio.to_thread(self._bucket().remove, paths)
        except Exception as exc:
            raise StorageError(f"Failed to remove {paths!r}: {exc}") from exc


# Module-level singleton shared by all requests
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """FastAPI dependency returning the shared StorageService."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
