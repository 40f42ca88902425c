"""Debug utilities for superpixel graph auditing."""
import logging
from typing import Optional

from spmerge.superpixel_image import SuperpixelImage

logger = logging.getLogger(__name__)


def audit_superpixel_image(
    sp_image: SuperpixelImage,
    expected_num_pixels: Optional[int] = None,
    phase: str = "merge"
) -> dict:
    """
    Audit a superpixel graph for broken invariants.

    Args:
        sp_image: Graph to audit
        expected_num_pixels: Pixel count the graph must cover, defaults
            to width * height
        phase: Description of the phase (for logging)

    Returns:
        Dictionary with audit statistics, "ok" is True when no problem
        was found
    """
    if expected_num_pixels is None:
        expected_num_pixels = sp_image.width * sp_image.height

    stats = {
        "total_superpixels": len(sp_image.superpixels),
        "total_pixels": 0,
        "duplicate_pixels": 0,
        "unsorted_tags": 0,
        "missing_superpixels": 0,
        "asymmetric_edges": 0,
        "dead_neighbors": 0,
        "isolated_superpixels": 0,
        "stale_edge_strengths": 0,
    }

    live = set(sp_image.superpixels)

    if sp_image.superpixels != sorted(live):
        stats["unsorted_tags"] += 1
        logger.warning(f"Superpixel audit ({phase}): live tags are not sorted")

    if live != set(sp_image.tag_to_superpixel):
        stats["missing_superpixels"] = len(live.symmetric_difference(sp_image.tag_to_superpixel))
        logger.warning(f"Superpixel audit ({phase}): live tags do not match the superpixel table")

    seen = set()
    for tag in sp_image.superpixels:
        sp = sp_image.get_superpixel(tag)
        if sp is None:
            continue
        stats["total_pixels"] += len(sp.coords)
        for coord in sp.coords:
            if coord in seen:
                stats["duplicate_pixels"] += 1
            seen.add(coord)

    edge_table = sp_image.edge_table
    multiple = len(live) > 1
    for tag in sp_image.superpixels:
        neighbors = edge_table.get_neighbors_set(tag)
        if multiple and not neighbors:
            stats["isolated_superpixels"] += 1
            logger.warning(f"Superpixel {tag} has no neighbors")
        for neighbor in neighbors:
            if neighbor not in live:
                stats["dead_neighbors"] += 1
                logger.debug(f"Superpixel {tag} lists merged away neighbor {neighbor}")
            elif tag not in edge_table.get_neighbors_set(neighbor):
                stats["asymmetric_edges"] += 1
                logger.debug(f"Edge {tag} -> {neighbor} has no reverse edge")

    for a, b in edge_table.edge_strength:
        if a not in live or b not in live:
            stats["stale_edge_strengths"] += 1

    if stats["total_pixels"] != expected_num_pixels:
        logger.error(
            f"PIXEL COUNT MISMATCH ({phase}): "
            f"{stats['total_pixels']} covered, {expected_num_pixels} expected"
        )

    problems = (
        stats["duplicate_pixels"] + stats["unsorted_tags"] + stats["missing_superpixels"] +
        stats["asymmetric_edges"] + stats["dead_neighbors"] + stats["isolated_superpixels"] +
        stats["stale_edge_strengths"]
    )
    stats["ok"] = problems == 0 and stats["total_pixels"] == expected_num_pixels

    logger.info(
        f"Superpixel audit ({phase}): {stats['total_superpixels']} superpixels, "
        f"{stats['total_pixels']} pixels, "
        f"{stats['asymmetric_edges']} asymmetric edges, "
        f"{stats['stale_edge_strengths']} stale edge strengths"
    )

    return stats
