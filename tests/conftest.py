import io
import asyncio
from typing import AsyncGenerator, Dict, List, Optional, Set

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from storefront_media.core.config import settings
from storefront_media.core.exceptions import StorageError
from storefront_media.core.storage import IStorage

ADMIN_TOKEN = "test-admin-key"


class InMemoryStorage(IStorage):
    """Storage backend double that keeps objects in a dict.

    Hands out URLs of the form https://backend/upload/v1/{folder}/img{n}{ext}.
    """

    HOST = "backend"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[dict] = []
        self.delete_calls: List[str] = []
        self.failing_ids: Set[str] = set()
        self.upload_error: Optional[Exception] = None
        self.delete_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, file_data, folder, content_type="image/jpeg", filename="image"):
        if self.upload_error is not None:
            raise self.upload_error
        ext = "." + filename.rsplit(".", 1)[-1] if "." in filename else ""
        public_id = f"{folder}/img{len(self.uploads) + 1}"
        self.objects[public_id] = file_data
        self.uploads.append({
            "public_id": public_id,
            "folder": folder,
            "content_type": content_type,
            "data": file_data,
        })
        return f"https://{self.HOST}/upload/v1/{public_id}{ext}"

    async def delete(self, public_id):
        self.delete_calls.append(public_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delete_delay:
                await asyncio.sleep(self.delete_delay)
            if public_id in self.failing_ids:
                raise StorageError(f"backend refused {public_id}")
            return self.objects.pop(public_id, None) is not None
        finally:
            self.in_flight -= 1

    def owns_url(self, url):
        return isinstance(url, str) and url.startswith(f"https://{self.HOST}/")


def encode_image(fmt: str = "PNG", size=(64, 48), mode: str = "RGB", color=(200, 30, 30), **save_kwargs) -> bytes:
    if mode in ("RGBA", "LA") and isinstance(color, tuple) and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, size, color if mode not in ("L", "P") else 128)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def serve(body: bytes, content_type: str = "image/png", status: int = 200, requests: Optional[list] = None):
    """MockTransport answering every request with the same response."""
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, headers={"content-type": content_type}, content=body)

    return httpx.MockTransport(handler)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def make_image():
    return encode_image


@pytest.fixture
def image_transport():
    return serve


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_TOKEN)
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from storefront_media.main import app

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()
