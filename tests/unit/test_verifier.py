import io

import pytest
from PIL import Image

from storefront_media.core.config import settings
from storefront_media.core.exceptions import ErrorKind, VerificationError, VerificationFailure
from storefront_media.pipeline.models import FetchedImage, ImageFormat
from storefront_media.pipeline import stages
from storefront_media.pipeline.stages import normalize_content_type, verify_image


@pytest.mark.parametrize("declared,expected", [
    ("image/png", "image/png"),
    ("image/jpg", "image/jpeg"),
    ("IMAGE/JPEG; charset=binary", "image/jpeg"),
    ("image/webp", "image/webp"),
    ("image/gif", "image/gif"),
    ("text/html", None),
    ("image/svg+xml", None),
    ("", None),
])
def test_normalize_content_type(declared, expected):
    assert normalize_content_type(declared) == expected


@pytest.mark.parametrize("fmt,expected", [
    ("PNG", ImageFormat.PNG),
    ("JPEG", ImageFormat.JPEG),
    ("WEBP", ImageFormat.WEBP),
    ("GIF", ImageFormat.GIF),
])
def test_resolved_format_comes_from_decoder(make_image, fmt, expected):
    fetched = FetchedImage(data=make_image(fmt, size=(120, 80)), declared_content_type="image/jpeg")

    verified = verify_image(fetched)

    assert verified.resolved_format == expected
    assert (verified.width, verified.height) == (120, 80)
    assert verified.data == fetched.data


def test_html_content_type_rejected_even_with_image_bytes(make_image):
    fetched = FetchedImage(data=make_image("PNG"), declared_content_type="text/html; charset=utf-8")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.UNSUPPORTED_CONTENT_TYPE
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_FORMAT


def test_undecodable_bytes_rejected():
    fetched = FetchedImage(data=b"<html>definitely not a png</html>", declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.NOT_DECODABLE
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_FORMAT


def test_decodable_but_unsupported_format_rejected(make_image):
    fetched = FetchedImage(data=make_image("BMP"), declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.NOT_DECODABLE


def test_truncated_image_rejected(make_image):
    data = make_image("PNG", size=(200, 200))
    fetched = FetchedImage(data=data[: len(data) // 2], declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.NOT_DECODABLE


@pytest.mark.parametrize("size", [(5001, 10), (10, 5001)])
def test_dimension_cap(make_image, size):
    fetched = FetchedImage(data=make_image("PNG", size=size, mode="L"), declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.TOO_LARGE
    assert "5000x5000" in exc_info.value.user_message


def test_dimension_cap_is_inclusive(make_image):
    fetched = FetchedImage(data=make_image("PNG", size=(5000, 4), mode="L"), declared_content_type="image/png")

    verified = verify_image(fetched)

    assert verified.width == 5000


def test_custom_dimension_limit(make_image):
    fetched = FetchedImage(data=make_image("JPEG", size=(300, 200)), declared_content_type="image/jpeg")

    with pytest.raises(VerificationError):
        verify_image(fetched, max_dimension=250)


def test_truncated_jpeg_rejected_at_verify():
    # Arrange
    noise = Image.effect_noise((400, 400), 64).convert("RGB")
    buffer = io.BytesIO()
    noise.save(buffer, format="JPEG", quality=95)
    data = buffer.getvalue()
    fetched = FetchedImage(data=data[: len(data) // 2], declared_content_type="image/jpeg")

    # Act
    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    # Assert
    assert exc_info.value.reason == VerificationFailure.NOT_DECODABLE
    assert exc_info.value.stage == "verify"


class _ZeroWidthImage:
    """Decoder result that opens cleanly but reports no width."""

    format = "PNG"
    size = (0, 10)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def verify(self):
        pass

    def load(self):
        pass


def test_zero_dimension_image_rejected(make_image, monkeypatch):
    monkeypatch.setattr(stages.Image, "open", lambda fp: _ZeroWidthImage())
    fetched = FetchedImage(data=make_image("PNG"), declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.MISSING_DIMENSIONS
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED_FORMAT


def test_dimension_limit_follows_settings(make_image, monkeypatch):
    monkeypatch.setattr(settings, "MAX_IMAGE_DIMENSION", 100)
    fetched = FetchedImage(data=make_image("PNG", size=(150, 20)), declared_content_type="image/png")

    with pytest.raises(VerificationError) as exc_info:
        verify_image(fetched)

    assert exc_info.value.reason == VerificationFailure.TOO_LARGE
