"""
Pipeline Stage Implementations

Each stage is a separate function (or small class where it holds
configuration) that can be called independently. Every failure is raised
as a classified MediaPipelineError subclass at the point it happens.
"""

import io
import asyncio
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx
from PIL import Image, ImageOps

from storefront_media.core.config import settings
from storefront_media.core.exceptions import (
    FetchError,
    FetchFailure,
    TranscodeError,
    UploadError,
    UploadFailure,
    UrlRejection,
    UrlValidationError,
    VerificationError,
    VerificationFailure,
)
from storefront_media.core.logging import get_logger, with_logging
from storefront_media.core.storage import IStorage
from storefront_media.pipeline.models import (
    FetchedImage,
    ImageFormat,
    OutputFormat,
    TranscodedImage,
    UploadResult,
    VerifiedImage,
)

logger = get_logger(__name__)


# =============================================================================
# Stage 1: URL Validation
# =============================================================================

IMAGE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".tif",
    ".svg", ".heic", ".heif", ".avif",
)
IMAGE_URL_MARKERS = ("image", "photo", "pic")


def _is_known_image_host(hostname: str, hosts: Iterable[str]) -> bool:
    return any(hostname == host or hostname.endswith("." + host) for host in hosts)


@with_logging("validate")
def validate_image_url(url: Optional[str], image_hosts: Optional[Iterable[str]] = None) -> str:
    """
    Decide whether a caller-supplied string plausibly points at an image.

    This is a pre-filter only: it never touches the network, and passing it
    says nothing about what the URL actually serves.

    Returns:
        The trimmed URL

    Raises:
        UrlValidationError: EMPTY, MALFORMED_URL or NOT_IMAGE_LIKE
    """
    if url is None or not isinstance(url, str) or not url.strip():
        raise UrlValidationError("Image URL is empty", reason=UrlRejection.EMPTY)

    trimmed = url.strip()
    try:
        parsed = urlparse(trimmed)
        hostname = (parsed.hostname or "").lower()
    except ValueError:
        raise UrlValidationError(f"Unparseable URL: {trimmed}", reason=UrlRejection.MALFORMED_URL)

    if parsed.scheme.lower() not in ("http", "https") or not hostname:
        raise UrlValidationError(
            f"URL must be absolute http(s): {trimmed}",
            reason=UrlRejection.MALFORMED_URL
        )

    hosts = list(image_hosts) if image_hosts is not None else settings.image_hosts
    path = parsed.path.lower()
    query = parsed.query.lower()

    has_extension = path.endswith(IMAGE_EXTENSIONS)
    from_image_host = _is_known_image_host(hostname, hosts)
    has_marker = any(marker in path or marker in query for marker in IMAGE_URL_MARKERS)

    if not (has_extension or from_image_host or has_marker):
        raise UrlValidationError(
            f"URL does not look like an image: {trimmed}",
            reason=UrlRejection.NOT_IMAGE_LIKE
        )

    return trimmed


# =============================================================================
# Stage 2: Bounded Fetch
# =============================================================================

class BoundedFetcher:
    """
    Single-attempt HTTP GET with a wall-clock deadline and a byte budget.

    The body is streamed and the transfer is aborted as soon as the budget
    is exceeded, so an oversized response is never buffered in full.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        user_agent: Optional[str] = None,
        chunk_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_IMAGE_SIZE_BYTES
        self.chunk_size = chunk_size if chunk_size is not None else settings.FETCH_CHUNK_SIZE
        self.headers = {
            "User-Agent": user_agent if user_agent is not None else settings.FETCH_USER_AGENT,
            "Accept": "image/avif,image/webp,image/png,image/jpeg,image/*;q=0.8,*/*;q=0.5",
        }
        self._transport = transport

    @with_logging("fetch")
    async def fetch(self, url: str) -> FetchedImage:
        try:
            return await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FetchError(
                f"Fetch exceeded {self.timeout}s: {url}",
                reason=FetchFailure.TIMEOUT
            )

    async def _fetch(self, url: str) -> FetchedImage:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=self.headers,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    self._ensure_status(response, url)

                    content_type = response.headers.get("content-type", "")
                    self._ensure_declared_length(response.headers.get("content-length"), url)

                    buffer = bytearray()
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        buffer += chunk
                        if len(buffer) > self.max_bytes:
                            raise FetchError(
                                f"Body exceeded {self.max_bytes} bytes while streaming: {url}",
                                reason=FetchFailure.TOO_LARGE
                            )

        except FetchError:
            raise
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {url}: {e}", reason=FetchFailure.TIMEOUT)
        except httpx.ConnectError as e:
            raise FetchError(f"Could not connect to {url}: {e}", reason=FetchFailure.UNREACHABLE)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(
                f"Transport error fetching {url}: {type(e).__name__}: {e}",
                reason=FetchFailure.TRANSPORT_ERROR
            )

        logger.info(
            "image_fetched",
            url=url,
            content_type=content_type,
            size=len(buffer)
        )
        return FetchedImage(data=bytes(buffer), declared_content_type=content_type)

    def _ensure_status(self, response: httpx.Response, url: str):
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 404:
            raise FetchError(f"404 from {url}", reason=FetchFailure.NOT_FOUND, http_status=status)
        if status == 403:
            raise FetchError(f"403 from {url}", reason=FetchFailure.FORBIDDEN, http_status=status)
        raise FetchError(
            f"HTTP {status} from {url}",
            reason=FetchFailure.OTHER_HTTP_STATUS,
            http_status=status
        )

    def _ensure_declared_length(self, header_value: Optional[str], url: str):
        if header_value and header_value.strip().isdigit() and int(header_value) > self.max_bytes:
            raise FetchError(
                f"Declared Content-Length {header_value} exceeds {self.max_bytes}: {url}",
                reason=FetchFailure.TOO_LARGE
            )


# =============================================================================
# Stage 3: Image Verification
# =============================================================================

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")

# Pillow format name -> accepted format. MPO is the multi-picture JPEG
# variant written by many phone cameras.
DECODER_FORMATS = {
    "JPEG": ImageFormat.JPEG,
    "MPO": ImageFormat.JPEG,
    "PNG": ImageFormat.PNG,
    "WEBP": ImageFormat.WEBP,
    "GIF": ImageFormat.GIF,
}


def normalize_content_type(declared: str) -> Optional[str]:
    """Map a declared content-type onto the allow-list ("jpg" -> "jpeg")."""
    lowered = (declared or "").lower()
    for allowed in ALLOWED_CONTENT_TYPES:
        if allowed in lowered:
            return "image/jpeg" if allowed == "image/jpg" else allowed
    return None


@with_logging("verify")
def verify_image(
    fetched: FetchedImage,
    max_dimension: Optional[int] = None
) -> VerifiedImage:
    """
    Confirm the fetched bytes are a real, bounded image.

    The resolved format comes from the decoder, never from the header.
    """
    if max_dimension is None:
        max_dimension = settings.MAX_IMAGE_DIMENSION

    if normalize_content_type(fetched.declared_content_type) is None:
        raise VerificationError(
            f"Declared content type not allowed: {fetched.declared_content_type!r}",
            reason=VerificationFailure.UNSUPPORTED_CONTENT_TYPE
        )

    try:
        with Image.open(io.BytesIO(fetched.data)) as structure:
            structure.verify()
        with Image.open(io.BytesIO(fetched.data)) as img:
            decoder_format = img.format
            width, height = img.size
            # verify() stops at the headers; truncated scan data only shows on a full decode
            if width and height and width <= max_dimension and height <= max_dimension:
                img.load()
    except Image.DecompressionBombError as e:
        raise VerificationError(
            f"Decompression bomb rejected: {e}",
            reason=VerificationFailure.TOO_LARGE
        )
    except Exception as e:
        raise VerificationError(
            f"Could not decode image: {type(e).__name__}: {e}",
            reason=VerificationFailure.NOT_DECODABLE
        )

    resolved = DECODER_FORMATS.get(decoder_format or "")
    if resolved is None:
        raise VerificationError(
            f"Decoded format not supported: {decoder_format}",
            reason=VerificationFailure.NOT_DECODABLE
        )

    if not width or not height or width <= 0 or height <= 0:
        raise VerificationError(
            f"Image has no usable dimensions: {width}x{height}",
            reason=VerificationFailure.MISSING_DIMENSIONS
        )

    if width > max_dimension or height > max_dimension:
        raise VerificationError(
            f"Image is {width}x{height}, limit is {max_dimension}x{max_dimension}",
            reason=VerificationFailure.TOO_LARGE,
            details={"width": width, "height": height}
        )

    logger.info(
        "image_verified",
        format=resolved.value,
        width=width,
        height=height,
        declared_content_type=fetched.declared_content_type
    )

    return VerifiedImage(
        data=fetched.data,
        declared_content_type=fetched.declared_content_type,
        width=width,
        height=height,
        resolved_format=resolved
    )


# =============================================================================
# Stage 4: Transcode
# =============================================================================

def output_format_for(source: ImageFormat) -> OutputFormat:
    """PNG stays PNG, WebP stays WebP, everything else becomes JPEG."""
    if source is ImageFormat.PNG:
        return OutputFormat.PNG
    if source is ImageFormat.WEBP:
        return OutputFormat.WEBP
    return OutputFormat.JPEG


def fit_within(width: int, height: int, max_edge: int):
    """Proportional size with the long edge clamped to max_edge. Never upscales."""
    long_edge = max(width, height)
    if long_edge <= max_edge:
        return width, height
    if width >= height:
        return max_edge, max(1, round(height * max_edge / width))
    return max(1, round(width * max_edge / height)), max_edge


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB") if img.mode != "RGB" else img


@with_logging("transcode")
def transcode_image(
    verified: VerifiedImage,
    max_edge: Optional[int] = None,
    jpeg_quality: Optional[int] = None,
    webp_quality: Optional[int] = None,
    png_compress_level: Optional[int] = None
) -> TranscodedImage:
    """
    Downsize to the output edge limit and re-encode into one of the three
    storage formats. Always re-encodes, even when no resize is needed.

    Unset knobs are read from settings at call time.
    """
    max_edge = max_edge if max_edge is not None else settings.MAX_OUTPUT_EDGE
    jpeg_quality = jpeg_quality if jpeg_quality is not None else settings.JPEG_QUALITY
    webp_quality = webp_quality if webp_quality is not None else settings.WEBP_QUALITY
    if png_compress_level is None:
        png_compress_level = settings.PNG_COMPRESS_LEVEL

    output_format = output_format_for(verified.resolved_format)

    try:
        with Image.open(io.BytesIO(verified.data)) as source:
            img = ImageOps.exif_transpose(source)

            if output_format is OutputFormat.JPEG:
                img = _flatten_to_rgb(img)
            elif img.mode not in ("RGB", "RGBA", "L", "LA"):
                img = img.convert("RGBA")

            target = fit_within(img.width, img.height, max_edge)
            if target != img.size:
                img = img.resize(target, Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            if output_format is OutputFormat.PNG:
                img.save(buffer, format="PNG", optimize=True, compress_level=png_compress_level)
            elif output_format is OutputFormat.WEBP:
                img.save(buffer, format="WEBP", quality=webp_quality)
            else:
                img.save(buffer, format="JPEG", quality=jpeg_quality, optimize=True, progressive=True)

            width, height = img.size
            data = buffer.getvalue()
    except Exception as e:
        raise TranscodeError(
            f"Failed to encode {output_format.value}: {type(e).__name__}: {e}"
        )

    if not data:
        raise TranscodeError(f"Encoder produced no output for {output_format.value}")

    logger.info(
        "image_transcoded",
        output_format=output_format.value,
        width=width,
        height=height,
        input_size=verified.byte_length,
        output_size=len(data)
    )

    return TranscodedImage(data=data, output_format=output_format, width=width, height=height)


# =============================================================================
# Stage 5: Storage Upload
# =============================================================================

def folder_for(product_id: Optional[str], prefix: str = "") -> str:
    """products/{product_id}, or products/temp when there is no product yet."""
    product = product_id.strip() if isinstance(product_id, str) else ""
    folder = f"products/{product}" if product else "products/temp"
    prefix = (prefix or "").strip("/")
    return f"{prefix}/{folder}" if prefix else folder


class StorageUploader:
    """Pushes transcoded bytes to the storage backend under the product folder."""

    def __init__(self, storage: IStorage, folder_prefix: Optional[str] = None):
        self.storage = storage
        self.folder_prefix = folder_prefix if folder_prefix is not None else settings.STORAGE_FOLDER_PREFIX

    @with_logging("upload")
    async def upload(self, transcoded: TranscodedImage, product_id: Optional[str] = None) -> UploadResult:
        folder = folder_for(product_id, self.folder_prefix)

        try:
            public_url = await self.storage.upload(
                transcoded.data,
                folder=folder,
                content_type=transcoded.content_type,
                filename=f"image{transcoded.output_format.extension}"
            )
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(
                f"Storage upload failed: {type(e).__name__}: {e}",
                reason=UploadFailure.TRANSPORT_ERROR
            )

        if not public_url:
            raise UploadError(
                "Storage backend returned no public URL",
                reason=UploadFailure.INVALID_BACKEND_RESPONSE
            )

        logger.info("image_uploaded", folder=folder, public_url=public_url, size=transcoded.byte_length)
        return UploadResult(public_url=public_url, folder=folder)
