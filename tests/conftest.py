from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from bgmask_service import config

BLUE = (0, 0, 255)
RED = (255, 0, 0)


@pytest.fixture(autouse=True)
def fresh_settings():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


@pytest.fixture
def solid_image():
    def _make(width, height, color, channels=3):
        image = np.zeros((height, width, channels), dtype=np.uint8)
        image[:, :, :3] = color
        if channels == 4:
            image[:, :, 3] = 255
        return image

    return _make


@pytest.fixture
def framed_square(solid_image):
    """100x100 blue image with a 60x60 red square centred inside a 20px frame."""
    image = solid_image(100, 100, BLUE)
    image[20:80, 20:80] = RED
    return image


@pytest.fixture
def png_bytes():
    def _encode(array):
        buf = BytesIO()
        Image.fromarray(array).save(buf, format="PNG")
        return buf.getvalue()

    return _encode
