"""Tag buffer encoding and the initial region proposal."""
import logging

import numpy as np
from skimage.segmentation import felzenszwalb

logger = logging.getLogger(__name__)

# Reserved tag value, a parsed tag buffer may never contain it
RESERVED_TAG = 0xFFFFFF
MAX_TAG = 0xFFFFFE


def bgr_to_uid(image: np.ndarray) -> np.ndarray:
    """
    Decode a BGR tag image into integer tags.

    Args:
        image: HxWx3 array with B, G, R channels

    Returns:
        HxW int64 array where tag = (R << 16) | (G << 8) | B
    """
    image = np.asarray(image)
    b = image[..., 0].astype(np.int64)
    g = image[..., 1].astype(np.int64)
    r = image[..., 2].astype(np.int64)
    return (r << 16) | (g << 8) | b


def uid_to_bgr(uids: np.ndarray) -> np.ndarray:
    """Encode integer tags as a BGR uint8 image, the inverse of bgr_to_uid."""
    uids = np.asarray(uids, dtype=np.int64)
    out = np.zeros(uids.shape + (3,), dtype=np.uint8)
    out[..., 0] = uids & 0xFF
    out[..., 1] = (uids >> 8) & 0xFF
    out[..., 2] = (uids >> 16) & 0xFF
    return out


def labels_to_tags(labels: np.ndarray) -> np.ndarray:
    """
    Convert a label map into a BGR tag image that parse() accepts.

    Labels are renumbered from zero in ascending order, so no tag can reach
    the reserved all white value.
    """
    labels = np.asarray(labels)
    unique_labels, inverse = np.unique(labels, return_inverse=True)
    if len(unique_labels) > MAX_TAG:
        raise ValueError(f"Too many labels to encode as tags: {len(unique_labels)}")
    tags = inverse.reshape(labels.shape).astype(np.int64)
    return uid_to_bgr(tags)


def segment(image: np.ndarray, q: float = 128.0, sigma: float = 0.8, min_size: int = 20) -> np.ndarray:
    """
    Coarse initial segmentation of a BGR image into a tag image.

    Larger q values produce larger regions.

    Args:
        image: HxWx3 BGR uint8 image
        q: Scale of the graph based segmentation
        sigma: Gaussian smoothing applied before segmentation
        min_size: Minimum component size

    Returns:
        HxWx3 BGR tag image

    Raises:
        ValueError: If image format is invalid
    """
    if not isinstance(image, np.ndarray):
        raise ValueError("Input must be a numpy array")

    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("Input must be HxWx3 array")

    if image.dtype != np.uint8:
        raise ValueError("Input must be uint8 array")

    # felzenszwalb expects RGB channel order
    rgb = image[..., ::-1]
    labels = felzenszwalb(rgb, scale=q, sigma=sigma, min_size=min_size, channel_axis=-1)

    logger.info(f"Initial segmentation created {len(np.unique(labels))} regions (q={q})")

    return labels_to_tags(labels)
