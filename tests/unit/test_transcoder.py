import io

import pytest
from PIL import Image

from storefront_media.core.exceptions import ErrorKind, TranscodeError
from storefront_media.pipeline.models import FetchedImage, ImageFormat, OutputFormat
from storefront_media.pipeline.stages import fit_within, output_format_for, transcode_image, verify_image


def _verified(data: bytes, content_type: str = "image/png"):
    return verify_image(FetchedImage(data=data, declared_content_type=content_type))


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


@pytest.mark.parametrize("size,expected", [
    ((3000, 2000), (1920, 1280)),
    ((2000, 3000), (1280, 1920)),
    ((1920, 1080), (1920, 1080)),
    ((800, 600), (800, 600)),
    ((4000, 10), (1920, 5)),
    ((10000, 1), (1920, 1)),
])
def test_fit_within(size, expected):
    assert fit_within(*size, 1920) == expected


@pytest.mark.parametrize("source,expected", [
    (ImageFormat.PNG, OutputFormat.PNG),
    (ImageFormat.WEBP, OutputFormat.WEBP),
    (ImageFormat.JPEG, OutputFormat.JPEG),
    (ImageFormat.GIF, OutputFormat.JPEG),
])
def test_output_format_policy(source, expected):
    assert output_format_for(source) is expected


def test_large_png_is_downsized_and_stays_png(make_image):
    verified = _verified(make_image("PNG", size=(3000, 2000)))

    transcoded = transcode_image(verified)

    assert transcoded.output_format is OutputFormat.PNG
    assert transcoded.content_type == "image/png"
    assert (transcoded.width, transcoded.height) == (1920, 1280)
    decoded = _decode(transcoded.data)
    assert decoded.format == "PNG"
    assert decoded.size == (1920, 1280)


def test_small_jpeg_is_reencoded_without_resize(make_image):
    original = make_image("JPEG", size=(640, 480), quality=100)
    verified = _verified(original, "image/jpeg")

    transcoded = transcode_image(verified)

    assert transcoded.output_format is OutputFormat.JPEG
    assert (transcoded.width, transcoded.height) == (640, 480)
    assert transcoded.data != original
    assert _decode(transcoded.data).format == "JPEG"


def test_transcode_twice_reports_same_dimensions(make_image):
    verified = _verified(make_image("WEBP", size=(2500, 1000)), "image/webp")

    first = transcode_image(verified)
    second = transcode_image(verified)

    assert (first.width, first.height) == (second.width, second.height) == (1920, 768)
    assert first.output_format is OutputFormat.WEBP


def test_transparent_gif_is_flattened_to_jpeg(make_image):
    verified = _verified(make_image("GIF", size=(50, 50), mode="P", transparency=0), "image/gif")

    transcoded = transcode_image(verified)

    decoded = _decode(transcoded.data)
    assert transcoded.output_format is OutputFormat.JPEG
    assert decoded.format == "JPEG"
    assert decoded.mode == "RGB"


def test_png_alpha_is_kept(make_image):
    verified = _verified(make_image("PNG", size=(40, 40), mode="RGBA"))

    transcoded = transcode_image(verified)

    assert _decode(transcoded.data).mode == "RGBA"


def test_exif_orientation_is_applied():
    # Arrange: 200x100 landscape pixels tagged "rotate 90"
    img = Image.new("RGB", (200, 100), (0, 128, 255))
    exif = Image.Exif()
    exif[0x0112] = 6
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", exif=exif.tobytes())
    verified = _verified(buffer.getvalue(), "image/jpeg")

    # Act
    transcoded = transcode_image(verified)

    # Assert
    assert (transcoded.width, transcoded.height) == (100, 200)


def test_encoder_failure_is_classified(make_image, monkeypatch):
    verified = _verified(make_image("PNG"))

    def broken_save(self, *args, **kwargs):
        raise OSError("encoder exploded")

    monkeypatch.setattr(Image.Image, "save", broken_save)

    with pytest.raises(TranscodeError) as exc_info:
        transcode_image(verified)

    assert exc_info.value.kind == ErrorKind.INTERNAL
    assert exc_info.value.status == "internal"
