"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for the object-storage/CDN backend with
CloudinaryStorage (production) and LocalStorage (development). Backends
receive an explicit StorageConfig at construction so the pipeline can be
pointed at a fake backend in tests.
"""

import re
import time
import asyncio
import uuid
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx

from storefront_media.core.config import Settings, settings
from storefront_media.core.exceptions import StorageError, UploadError, UploadFailure
from storefront_media.core.logging import get_logger

logger = get_logger(__name__)

UPLOAD_MARKER = "upload"
_VERSION_SEGMENT = re.compile(r"^v\d+$")


@dataclass(frozen=True)
class StorageConfig:
    """Backend configuration, resolved once from Settings."""
    backend: str = "cloudinary"
    cloud_name: str = "demo"
    upload_preset: str = "storefront"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_base: str = "https://api.cloudinary.com"
    delivery_host: str = "res.cloudinary.com"
    transformation: Optional[str] = None
    folder_prefix: str = ""
    upload_timeout: float = 60.0
    delete_timeout: float = 30.0
    local_path: str = "./data/storage"
    local_base_url: str = "http://localhost:8000/static/storage"

    @classmethod
    def from_settings(cls, s: Settings) -> "StorageConfig":
        return cls(
            backend=s.STORAGE_BACKEND,
            cloud_name=s.CLOUDINARY_CLOUD_NAME,
            upload_preset=s.CLOUDINARY_UPLOAD_PRESET,
            api_key=s.CLOUDINARY_API_KEY,
            api_secret=s.CLOUDINARY_API_SECRET,
            api_base=s.CLOUDINARY_API_BASE.rstrip("/"),
            delivery_host=s.CLOUDINARY_DELIVERY_HOST.lower(),
            transformation=s.CLOUDINARY_TRANSFORMATION,
            folder_prefix=s.STORAGE_FOLDER_PREFIX.strip("/"),
            upload_timeout=s.UPLOAD_TIMEOUT_SECONDS,
            delete_timeout=s.DELETE_TIMEOUT_SECONDS,
            local_path=s.LOCAL_STORAGE_PATH,
            local_base_url=s.LOCAL_STORAGE_BASE_URL.rstrip("/"),
        )


def extract_public_id(url: str) -> str:
    """
    Resolve a delivery URL back to the backend object identifier.

    The identifier is every path segment after the "upload" marker and its
    version segment, with the file extension stripped:

        https://res.cloudinary.com/demo/image/upload/v1712/products/p1/main.jpg
        -> products/p1/main

    Raises:
        ValueError: if the URL does not have that shape
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    if UPLOAD_MARKER not in segments:
        raise ValueError(f"No '{UPLOAD_MARKER}' segment in URL: {url}")

    rest = segments[segments.index(UPLOAD_MARKER) + 1:]
    if rest and _VERSION_SEGMENT.match(rest[0]):
        rest = rest[1:]
    if not rest:
        raise ValueError(f"No object identifier after '{UPLOAD_MARKER}' in URL: {url}")

    public_id = "/".join(rest)
    stem, dot, ext = public_id.rpartition(".")
    if dot and stem and "/" not in ext:
        public_id = stem
    return public_id


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        folder: str,
        content_type: str = "image/jpeg",
        filename: str = "image"
    ) -> str:
        """
        Upload a file and return its public delivery URL.

        Raises:
            UploadError: classified upload failure
        """

    @abstractmethod
    async def delete(self, public_id: str) -> bool:
        """
        Delete an object by identifier.

        Returns:
            True if the backend confirmed the delete, False otherwise

        Raises:
            StorageError: on transport failures
        """

    @abstractmethod
    def owns_url(self, url: str) -> bool:
        """Whether a URL was issued by this backend."""

    def public_id_for(self, url: str) -> str:
        return extract_public_id(url)


class CloudinaryStorage(IStorage):
    """Cloudinary upload/destroy over its REST API."""

    RECOGNIZED_DOMAIN = "cloudinary.com"

    def __init__(
        self,
        config: StorageConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self._transport = transport

    @property
    def _endpoint(self) -> str:
        return f"{self.config.api_base}/v1_1/{self.config.cloud_name}/image"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=self._transport)

    async def _post(self, path: str, timeout: float, **kwargs) -> httpx.Response:
        """POST under a hard wall-clock deadline on top of httpx's per-phase timeouts."""
        async with self._client(timeout) as client:
            return await asyncio.wait_for(client.post(f"{self._endpoint}/{path}", **kwargs), timeout=timeout)

    def _sign(self, params: dict) -> str:
        """Cloudinary request signature: sha1 of sorted params + api secret."""
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return hashlib.sha1((to_sign + self.config.api_secret).encode("utf-8")).hexdigest()

    def owns_url(self, url: str) -> bool:
        if not isinstance(url, str) or not url:
            return False
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        return (
            host == self.config.delivery_host
            or host == self.RECOGNIZED_DOMAIN
            or host.endswith("." + self.RECOGNIZED_DOMAIN)
        )

    async def upload(
        self,
        file_data: bytes,
        folder: str,
        content_type: str = "image/jpeg",
        filename: str = "image"
    ) -> str:
        form = {
            "upload_preset": self.config.upload_preset,
            "folder": folder,
        }
        if self.config.transformation:
            form["transformation"] = self.config.transformation

        try:
            response = await self._post(
                "upload",
                self.config.upload_timeout,
                data=form,
                files={"file": (filename, file_data, content_type)},
            )
        except asyncio.TimeoutError:
            raise UploadError(
                f"Cloudinary upload exceeded {self.config.upload_timeout}s",
                reason=UploadFailure.TIMEOUT
            )
        except httpx.TimeoutException as e:
            raise UploadError(f"Cloudinary upload timed out: {e}", reason=UploadFailure.TIMEOUT)
        except httpx.HTTPError as e:
            raise UploadError(
                f"Cloudinary upload transport error: {e}",
                reason=UploadFailure.TRANSPORT_ERROR
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            message = None
            if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
                message = payload["error"].get("message")
            message = message or f"HTTP {response.status_code}"
            raise UploadError(
                f"Cloudinary upload failed: {message}",
                reason=UploadFailure.BACKEND_REJECTED,
                details={"backend_message": message, "http_status": response.status_code}
            )

        if not isinstance(payload, dict) or not payload.get("secure_url"):
            raise UploadError(
                "Invalid response from Cloudinary: missing secure_url",
                reason=UploadFailure.INVALID_BACKEND_RESPONSE,
                details={"http_status": response.status_code}
            )

        return payload["secure_url"]

    async def delete(self, public_id: str) -> bool:
        params = {"public_id": public_id, "timestamp": int(time.time())}
        if self.config.api_key and self.config.api_secret:
            params["signature"] = self._sign(params)
            params["api_key"] = self.config.api_key

        try:
            response = await self._post("destroy", self.config.delete_timeout, data=params)
        except asyncio.TimeoutError as e:
            raise StorageError(
                f"Cloudinary destroy for {public_id} exceeded {self.config.delete_timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"Cloudinary destroy failed for {public_id}: {e}") from e

        if response.status_code >= 400:
            logger.warning(
                "cloudinary_destroy_rejected",
                public_id=public_id,
                http_status=response.status_code,
                body=response.text[:200]
            )
            return False

        try:
            payload = response.json()
        except ValueError:
            return False
        return isinstance(payload, dict) and payload.get("result") == "ok"


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development.

    Files are laid out as {base}/upload/v1/{folder}/{name}{ext} so the URLs
    it hands out resolve through the same public-id parsing as Cloudinary.
    """

    VERSION = "v1"

    def __init__(self, base_path: str = "./data/storage", base_url: str = "http://localhost:8000/static/storage"):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self.root = self.base_path / UPLOAD_MARKER / self.VERSION
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extension(content_type: str) -> str:
        subtype = content_type.split("/")[-1].split(";")[0].strip()
        return ".jpg" if subtype in ("jpeg", "jpg") else f".{subtype}"

    def _resolve(self, public_id: str) -> Tuple[Path, str]:
        target = (self.root / public_id).resolve()
        root = self.root.resolve()
        if root not in target.parents:
            raise StorageError(f"Identifier escapes storage root: {public_id}")
        return target.parent, target.name

    async def upload(
        self,
        file_data: bytes,
        folder: str,
        content_type: str = "image/jpeg",
        filename: str = "image"
    ) -> str:
        folder_path = self.root / folder
        folder_path.mkdir(parents=True, exist_ok=True)

        name = f"{uuid.uuid4().hex[:12]}{self._extension(content_type)}"
        with open(folder_path / name, "wb") as f:
            f.write(file_data)

        return f"{self.base_url}/{UPLOAD_MARKER}/{self.VERSION}/{folder}/{name}"

    async def delete(self, public_id: str) -> bool:
        parent, stem = self._resolve(public_id)
        if not parent.is_dir():
            return False
        deleted = False
        for path in parent.glob(f"{stem}.*"):
            path.unlink()
            deleted = True
        return deleted

    def owns_url(self, url: str) -> bool:
        return isinstance(url, str) and url.startswith(self.base_url + "/")


class StorageFactory:
    """
    Factory for creating storage instances.

    The backend is chosen by STORAGE_BACKEND; "local" keeps uploads on disk
    for development, anything else talks to Cloudinary.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def create(cls, config: StorageConfig) -> IStorage:
        if config.backend.lower() == "local":
            return LocalStorage(base_path=config.local_path, base_url=config.local_base_url)
        return CloudinaryStorage(config)

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the appropriate storage implementation based on settings."""
        if cls._instance is None:
            config = StorageConfig.from_settings(settings)
            cls._instance = cls.create(config)
            logger.info("storage_backend_selected", backend=type(cls._instance).__name__)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
