from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from bgmask_service import pipeline
from bgmask_service.errors import ImageError, InvalidImage, UnsupportedChannelLayout
from bgmask_service.preprocessing import pixel_buffer_from_array

BLUE = (0, 0, 255)
RED = (255, 0, 0)


def _alpha(image):
    h, w, c = image.shape
    out = pipeline.remove_background(image.tobytes(), w, h, c)
    return np.frombuffer(out, dtype=np.uint8).reshape(h, w, 4)[:, :, 3]


def test_output_is_deterministic():
    rng = np.random.default_rng(3)
    image = rng.integers(0, 256, size=(40, 50, 3), dtype=np.uint8)
    raw = image.tobytes()

    first = pipeline.remove_background(raw, 50, 40, 3)
    second = pipeline.remove_background(raw, 50, 40, 3)

    assert first == second


@pytest.mark.parametrize("channels", [3, 4])
def test_geometry_is_preserved(solid_image, channels):
    image = solid_image(37, 23, (90, 60, 30), channels=channels)

    out = pipeline.remove_background(image.tobytes(), 37, 23, channels)

    assert len(out) == 37 * 23 * 4


def test_framed_square_keeps_only_the_square(framed_square):
    alpha = _alpha(framed_square)

    frame = np.ones((100, 100), dtype=bool)
    frame[20:80, 20:80] = False
    assert (alpha[frame] == 0).all()
    # Allow a transition band up to 3 px wide inside the square's edge.
    assert (alpha[23:77, 23:77] == 255).all()


def test_uniform_image_is_fully_transparent(solid_image):
    alpha = _alpha(solid_image(40, 30, (200, 180, 160)))

    assert (alpha == 0).all()


def test_region_touching_the_frame_is_kept(solid_image):
    image = solid_image(100, 100, BLUE)
    image[30:70, 60:] = RED

    alpha = _alpha(image)

    assert (alpha[31:69, 61:] == 255).all()
    assert (alpha[:28, :] == 0).all()
    assert (alpha[72:, :] == 0).all()
    assert (alpha[:, :58] == 0).all()


def test_even_two_colour_split_keeps_both_interiors(solid_image):
    # Both halves reach the corners, so the estimate lands halfway between
    # blue and red. Each colour is then close enough to be dropped inside
    # the lenient frame band but too far to be background in the interior.
    image = solid_image(100, 100, BLUE)
    image[:, 50:] = RED

    alpha = _alpha(image)

    assert (alpha[:8, :] == 0).all()
    assert (alpha[92:, :] == 0).all()
    assert (alpha[:, :8] == 0).all()
    assert (alpha[:, 92:] == 0).all()
    assert (alpha[20:80, 20:45] == 255).all()
    assert (alpha[20:80, 55:80] == 255).all()


def test_colour_channels_pass_through(framed_square):
    out = pipeline.remove_background(framed_square.tobytes(), 100, 100, 3)
    rgba = np.frombuffer(out, dtype=np.uint8).reshape(100, 100, 4)

    assert np.array_equal(rgba[:, :, :3], framed_square)


def test_create_background_mask_matches_alpha(framed_square):
    mask = pipeline.create_background_mask(pixel_buffer_from_array(framed_square))

    assert mask.dtype == np.bool_
    assert mask[0, 0]
    assert not mask[50, 50]


@pytest.mark.parametrize(
    "width,height,channels,length,error",
    [
        (0, 10, 3, 0, InvalidImage),
        (10, 0, 3, 0, InvalidImage),
        (10, 10, 3, 299, InvalidImage),
        (10, 10, 4, 300, InvalidImage),
        (10, 10, 2, 200, UnsupportedChannelLayout),
        (10, 10, 5, 500, UnsupportedChannelLayout),
    ],
)
def test_invalid_input_fails_fast(width, height, channels, length, error):
    with pytest.raises(error) as excinfo:
        pipeline.remove_background(bytes(length), width, height, channels)

    assert isinstance(excinfo.value, ImageError)
    assert isinstance(excinfo.value, ValueError)


def test_pixel_cap_is_enforced_on_decode(monkeypatch, solid_image, png_bytes):
    monkeypatch.setenv("MAX_IMAGE_PIXELS", "100")
    image = solid_image(11, 10, BLUE)

    with pytest.raises(InvalidImage):
        pipeline.process_image_bytes(png_bytes(image))


def test_core_ignores_pixel_cap(monkeypatch):
    monkeypatch.setenv("MAX_IMAGE_PIXELS", "50")
    image = np.zeros((10, 10, 3), dtype=np.uint8)

    out = pipeline.remove_background(image.tobytes(), 10, 10, 3)

    assert len(out) == 400


def test_process_image_bytes_returns_rgba_png(framed_square, png_bytes):
    out = pipeline.process_image_bytes(png_bytes(framed_square))

    decoded = Image.open(BytesIO(out))
    assert decoded.format == "PNG"
    assert decoded.mode == "RGBA"
    assert decoded.size == (100, 100)
    alpha = np.asarray(decoded)[:, :, 3]
    assert alpha[0, 0] == 0
    assert alpha[50, 50] == 255


def test_process_image_bytes_accepts_jpeg(solid_image):
    buf = BytesIO()
    Image.fromarray(solid_image(32, 32, (240, 240, 240))).save(buf, format="JPEG")

    out = pipeline.process_image_bytes(buf.getvalue())

    assert Image.open(BytesIO(out)).size == (32, 32)


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_process_image_bytes_rejects_garbage(payload):
    with pytest.raises(InvalidImage):
        pipeline.process_image_bytes(payload)


def test_process_image_file_writes_nobg_png(tmp_path, framed_square):
    source = tmp_path / "portrait.jpg"
    Image.fromarray(framed_square).save(source, format="JPEG", quality=100)

    processed = pipeline.process_image_file(source)

    assert processed.processed_path == tmp_path / "portrait_nobg.png"
    assert processed.processed_path.read_bytes() == processed.png_bytes
    assert (processed.width, processed.height) == (100, 100)


def test_process_image_file_missing_input(tmp_path):
    with pytest.raises(FileNotFoundError):
        pipeline.process_image_file(tmp_path / "missing.png")


def test_debug_mode_dumps_mask(monkeypatch, tmp_path, framed_square, png_bytes):
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("DEBUG_OUTPUT_DIR", str(tmp_path))

    pipeline.process_image_bytes(png_bytes(framed_square))

    assert (tmp_path / "mask.png").exists()
    assert (tmp_path / "background_overlay.png").exists()


def test_core_writes_no_debug_output(monkeypatch, tmp_path, framed_square):
    debug_dir = tmp_path / "debug"
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("DEBUG_OUTPUT_DIR", str(debug_dir))

    pipeline.remove_background(framed_square.tobytes(), 100, 100, 3)

    assert not debug_dir.exists()


def test_removal_is_always_available():
    assert pipeline.is_background_removal_available() is True
