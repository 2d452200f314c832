import asyncio

import httpx
import pytest

from storefront_media.core.config import settings
from storefront_media.core.exceptions import ErrorKind, FetchError, FetchFailure
from storefront_media.pipeline.stages import BoundedFetcher

URL = "https://images.example.com/photo.png"


@pytest.mark.asyncio
async def test_fetch_returns_body_and_content_type(make_image, image_transport):
    # Arrange
    body = make_image("PNG")
    requests = []
    fetcher = BoundedFetcher(transport=image_transport(body, "image/png", requests=requests))

    # Act
    fetched = await fetcher.fetch(URL)

    # Assert
    assert fetched.data == body
    assert fetched.byte_length == len(body)
    assert fetched.declared_content_type == "image/png"
    assert len(requests) == 1
    assert requests[0].headers["user-agent"] == "StorefrontMedia-ImageFetcher/1.0"


@pytest.mark.asyncio
async def test_missing_content_type_is_empty_string():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"abc"))
    fetched = await BoundedFetcher(transport=transport).fetch(URL)

    assert fetched.declared_content_type == ""


@pytest.mark.asyncio
@pytest.mark.parametrize("status,reason,kind", [
    (404, FetchFailure.NOT_FOUND, ErrorKind.NOT_FOUND),
    (403, FetchFailure.FORBIDDEN, ErrorKind.ACCESS_DENIED),
    (500, FetchFailure.OTHER_HTTP_STATUS, ErrorKind.UNREACHABLE),
    (410, FetchFailure.OTHER_HTTP_STATUS, ErrorKind.UNREACHABLE),
])
async def test_http_status_classification(image_transport, status, reason, kind):
    fetcher = BoundedFetcher(transport=image_transport(b"nope", "text/html", status=status))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.reason == reason
    assert exc_info.value.kind == kind
    assert exc_info.value.http_status == status


@pytest.mark.asyncio
async def test_not_found_message_mentions_404(image_transport):
    fetcher = BoundedFetcher(transport=image_transport(b"", status=404))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    message = exc_info.value.user_message.lower()
    assert "not found" in message
    assert "404" in message


@pytest.mark.asyncio
async def test_declared_length_over_budget_rejected_before_reading():
    fetcher = BoundedFetcher(max_bytes=100, transport=httpx.MockTransport(
        lambda request: httpx.Response(200, headers={"content-type": "image/png"}, content=b"x" * 101)
    ))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.reason == FetchFailure.TOO_LARGE
    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert exc_info.value.code == 413


@pytest.mark.asyncio
async def test_streamed_body_over_budget_aborts_transfer():
    # Arrange
    chunks_sent = []

    async def endless_body():
        for _ in range(1000):
            chunks_sent.append(1)
            yield b"x" * 64

    def handler(request):
        return httpx.Response(200, headers={"content-type": "image/jpeg"}, content=endless_body())

    fetcher = BoundedFetcher(max_bytes=256, chunk_size=64, transport=httpx.MockTransport(handler))

    # Act
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    # Assert
    assert exc_info.value.reason == FetchFailure.TOO_LARGE
    assert "10MB" in exc_info.value.user_message
    assert len(chunks_sent) < 1000


@pytest.mark.asyncio
async def test_body_exactly_at_budget_is_accepted(image_transport):
    fetcher = BoundedFetcher(max_bytes=128, transport=image_transport(b"y" * 128, "image/png"))

    fetched = await fetcher.fetch(URL)

    assert fetched.byte_length == 128


@pytest.mark.asyncio
async def test_wall_clock_timeout():
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, content=b"late")

    fetcher = BoundedFetcher(timeout=0.05, transport=httpx.MockTransport(slow))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.reason == FetchFailure.TIMEOUT
    assert exc_info.value.status == "deadline-exceeded"
    assert exc_info.value.code == 408


@pytest.mark.asyncio
@pytest.mark.parametrize("error,reason,kind,code", [
    (httpx.ConnectError, FetchFailure.UNREACHABLE, ErrorKind.UNREACHABLE, 400),
    (httpx.ReadTimeout, FetchFailure.TIMEOUT, ErrorKind.TIMEOUT, 408),
    (httpx.RemoteProtocolError, FetchFailure.TRANSPORT_ERROR, ErrorKind.INTERNAL, 500),
])
async def test_transport_errors_are_classified(error, reason, kind, code):
    def handler(request):
        raise error("boom", request=request)

    fetcher = BoundedFetcher(transport=httpx.MockTransport(handler))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.reason == reason
    assert exc_info.value.kind == kind
    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_single_attempt_no_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(FetchError):
        await BoundedFetcher(transport=httpx.MockTransport(handler)).fetch(URL)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_defaults_are_read_from_settings_at_construction(monkeypatch, make_image, image_transport):
    # Arrange
    monkeypatch.setattr(settings, "FETCH_USER_AGENT", "StorefrontMedia-Staging/2.0")
    monkeypatch.setattr(settings, "MAX_IMAGE_SIZE_BYTES", 16)
    requests = []
    fetcher = BoundedFetcher(transport=image_transport(make_image("PNG"), "image/png", requests=requests))

    # Act
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(URL)

    # Assert
    assert fetcher.max_bytes == 16
    assert exc_info.value.reason == FetchFailure.TOO_LARGE
    assert requests[0].headers["user-agent"] == "StorefrontMedia-Staging/2.0"
