"""Shared fixtures for synthetic tag buffers and images."""
import numpy as np
import pytest

from spmerge.segmentation import uid_to_bgr

# BGR colors
RED = (0, 0, 255)
BLUE = (255, 0, 0)


@pytest.fixture
def make_columns():
    """
    Build an image of side by side column regions.

    Returns a function (widths, colors, height) -> (image, tags) where
    region i spans widths[i] columns filled with colors[i] and is tagged i.
    """
    def _make(widths, colors, height=10):
        width = sum(widths)
        labels = np.zeros((height, width), dtype=np.int64)
        image = np.zeros((height, width, 3), dtype=np.uint8)
        x = 0
        for i, (w, color) in enumerate(zip(widths, colors)):
            labels[:, x:x + w] = i
            image[:, x:x + w] = color
            x += w
        return image, uid_to_bgr(labels)
    return _make


@pytest.fixture
def two_color_image():
    """24x24 image with a red left half and a blue right half."""
    image = np.zeros((24, 24, 3), dtype=np.uint8)
    image[:, :12] = RED
    image[:, 12:] = BLUE
    return image
