"""Raster image loading and saving in BGR channel order."""
from pathlib import Path
from typing import Union
import numpy as np
from PIL import Image
from PIL import ImageOps

from spmerge.types import SegmentationError


def rgb_to_bgr(image: np.ndarray) -> np.ndarray:
    """Swap the first and last channel of an HxWx3 image."""
    return np.ascontiguousarray(image[..., ::-1])


def ingest(path: Union[str, Path]) -> np.ndarray:
    """
    Load a raster image file as a BGR uint8 array.

    Images with alpha are composited on a white background.

    Args:
        path: Path to image file

    Returns:
        HxWx3 uint8 BGR image

    Raises:
        FileNotFoundError: If file doesn't exist
        SegmentationError: If file cannot be loaded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise SegmentationError(f"Path is not a file: {path}")

    try:
        with Image.open(path) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)

            if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
                img = img.convert('RGBA')
                background = Image.new('RGB', img.size, (255, 255, 255))
                background.paste(img, mask=img.split()[3])
                img = background
            elif img.mode != 'RGB':
                img = img.convert('RGB')

            return rgb_to_bgr(np.array(img, dtype=np.uint8))

    except (IOError, OSError) as e:
        raise SegmentationError(f"Failed to load image {path}: {e}")


def ingest_from_array(image: np.ndarray) -> np.ndarray:
    """
    Normalize an RGB(A) or grayscale array into a BGR uint8 image.

    Float input in [0, 1] is scaled to [0, 255].

    Raises:
        SegmentationError: If the array is not 2D or 3D with 3 or 4 channels
    """
    image = np.asarray(image)

    if image.ndim == 2:
        # Grayscale - convert to RGB
        image = np.stack([image] * 3, axis=-1)

    if image.ndim != 3:
        raise SegmentationError(f"Expected 3D array, got {image.ndim}D")

    if np.issubdtype(image.dtype, np.floating):
        scale = 255.0 if image.max() <= 1.0 else 1.0
        image = np.clip(np.rint(image * scale), 0, 255)

    image = image.astype(np.float64)

    if image.shape[2] == 4:
        # RGBA - composite on white
        alpha = image[..., 3:4] / 255.0
        rgb = image[..., :3] * alpha + 255.0 * (1.0 - alpha)
    elif image.shape[2] == 3:
        rgb = image
    else:
        raise SegmentationError(f"Expected 3 or 4 channels, got {image.shape[2]}")

    return rgb_to_bgr(np.clip(np.rint(rgb), 0, 255).astype(np.uint8))


def save_image(image: np.ndarray, path: Union[str, Path]):
    """
    Save a BGR or single channel image.

    Raises:
        SegmentationError: If the image cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if image.ndim == 3:
        image = rgb_to_bgr(image)

    try:
        Image.fromarray(np.ascontiguousarray(image)).save(path)
    except (IOError, OSError, ValueError) as e:
        raise SegmentationError(f"Failed to save image {path}: {e}")
