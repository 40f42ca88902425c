"""Debug visualization for clustering pipeline stages."""
from pathlib import Path
from typing import List, Sequence
import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
from matplotlib import pyplot as plt


def visualize_vote_curve(
    colortable: Sequence[int],
    curve: np.ndarray,
    peaks: List[int],
    output_path: Path
):
    """
    Plot the vote curve with detected peaks marked.

    Each bar is drawn in the color it counts votes for.
    """
    fig, ax = plt.subplots(figsize=(12, 4))

    xs = np.arange(len(curve))
    colors = [(0.0, 0.0, 0.0)]
    for pixel in colortable:
        colors.append((((pixel >> 16) & 0xFF) / 255.0, ((pixel >> 8) & 0xFF) / 255.0, (pixel & 0xFF) / 255.0))
    colors.append((0.0, 0.0, 0.0))

    ax.bar(xs, curve, color=colors, edgecolor='gray', linewidth=0.5)
    ax.plot(xs, curve, color='black', linewidth=1)

    if peaks:
        ax.scatter(peaks, np.asarray(curve)[peaks], color='red', marker='v', zorder=3,
                   label=f'{len(peaks)} peaks')
        ax.legend(loc='upper right')

    ax.set_xlabel('Color walk offset')
    ax.set_ylabel('Votes')
    ax.set_title('Identical neighbor votes')

    plt.tight_layout()
    plt.savefig(output_path, dpi=100, bbox_inches='tight')
    plt.close(fig)


def visualize_merge_stages(
    original: np.ndarray,
    stage_images: List[np.ndarray],
    stage_titles: List[str],
    output_path: Path
):
    """
    Side by side panels of the input and each merge stage.

    Images are BGR uint8.
    """
    num_panels = 1 + len(stage_images)
    fig, axes = plt.subplots(1, num_panels, figsize=(4 * num_panels, 4), squeeze=False)

    axes[0, 0].imshow(original[..., ::-1])
    axes[0, 0].set_title('Original')
    axes[0, 0].axis('off')

    for ax, image, title in zip(axes[0, 1:], stage_images, stage_titles):
        ax.imshow(image[..., ::-1])
        ax.set_title(title)
        ax.axis('off')

    plt.tight_layout()
    plt.savefig(output_path, dpi=100, bbox_inches='tight')
    plt.close(fig)
