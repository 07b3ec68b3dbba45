import cv2
import numpy as np
import pytest

from pii_pipeline import BoundingBox, Token


def make_image(width=120, height=80, color=(200, 220, 240)):
    """Solid BGR image with a gradient stripe so pixels are not all equal."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    image[:, :, 0] = np.linspace(0, 255, width, dtype=np.uint8)
    return image


def png_bytes(image):
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


def token(text, box=(10, 10, 60, 30), confidence=90.0):
    return Token(text=text, bounding_box=BoundingBox(*box), confidence=confidence)


@pytest.fixture
def image():
    return make_image()


@pytest.fixture
def image_png(image):
    return png_bytes(image)
