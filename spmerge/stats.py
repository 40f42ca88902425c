"""Sample statistics and the adaptive accept tests used by merge strategies."""
import logging
import math
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

# Constants of the positive delta window
MIN_STDDEV = 0.01
STDDEV_FACTOR = 2.0
MIN_INCREASING_DELTAS = 3
MAX_FIRST_WEIGHT = 0.5


def sample_mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(sum(values)) / len(values)


def sample_stddev(values: Sequence[float], mean: float) -> float:
    """Population standard deviation around a known mean, 0.0 when empty."""
    if len(values) == 0:
        return 0.0
    total = 0.0
    for v in values:
        delta = v - mean
        total += delta * delta
    return math.sqrt(total / len(values))


def mean_and_stddev(values: Sequence[float]) -> Tuple[float, float]:
    mean = sample_mean(values)
    return mean, sample_stddev(values, mean)


def float_diffs(values: Sequence[float]) -> List[float]:
    """
    Successive differences where the first element is the delta from zero.

    The result has the same length as the input.
    """
    diffs = []
    prev = 0.0
    for v in values:
        diffs.append(v - prev)
        prev = v
    return diffs


def pos_sample_within_bound(weights: Sequence[float], current_weight: float) -> bool:
    """
    Decide if a region should keep expanding given its history of merge weights.

    The history of accepted weights is converted into a window of absolute
    deltas. When the history is mostly increasing only the strictly
    increasing subsequence is used so that a single large drop does not
    widen the window. The candidate is rejected only when its positive
    delta from the last weight is an outlier, i.e. larger than
    mean + 2 * stddev of the window while the window itself is not flat.

    Args:
        weights: Previously accepted weights in acceptance order
        current_weight: Weight of the candidate merge

    Returns:
        True if merging should continue, False if the bound was exceeded
    """
    weights = list(weights)

    if len(weights) == 1 and weights[0] > MAX_FIRST_WEIGHT:
        return False

    if len(weights) <= 2:
        # Not enough history to build a window
        return True

    delta_weights = float_diffs(weights)[1:]

    num_non_neg_deltas = 0
    use_deltas = []
    for delta in delta_weights:
        if delta != 0.0:
            if delta > 0.0:
                num_non_neg_deltas += 1
            use_deltas.append(abs(delta))

    if num_non_neg_deltas >= MIN_INCREASING_DELTAS:
        increasing_weights = []
        prev = weights[0]
        for weight in weights[1:]:
            if weight > prev:
                increasing_weights.append(weight)
                prev = weight

        # Empty when nothing rises above a large first weight
        if increasing_weights:
            weights = increasing_weights
            use_deltas = float_diffs(increasing_weights)[1:]

    mean, stddev = mean_and_stddev(use_deltas)
    upper_limit = mean + (stddev * STDDEV_FACTOR)
    current_delta = current_weight - weights[-1]

    logger.debug(
        f"bound check: mean {mean:.4f} stddev {stddev:.4f} "
        f"upper {upper_limit:.4f} delta {current_delta:.4f}"
    )

    if stddev > MIN_STDDEV and current_delta > 0.0 and current_delta > upper_limit:
        return False
    return True


def should_merge_edge(
    merged_weights: Sequence[float],
    unmerged_weights: Sequence[float],
    edge_weight: float
) -> bool:
    """
    Decide if an edge is weak enough to be merged.

    Edge weights are distances, larger values mean a harder edge. With no
    history of rejected edges the merged history alone is checked with
    pos_sample_within_bound. Once rejected edges are known, the candidate
    must sit closer to the mean of the merged weights than to the mean of
    the unmerged ones. Otherwise the candidate must fall more than one
    stddev below the unmerged mean.

    Args:
        merged_weights: Weights of edges this region has merged
        unmerged_weights: Weights of edges this region declined to merge
        edge_weight: Weight of the candidate edge

    Returns:
        True if the edge should be merged
    """
    if len(unmerged_weights) == 0:
        return pos_sample_within_bound(merged_weights, edge_weight)

    unmerged_mean, unmerged_stddev = mean_and_stddev(unmerged_weights)

    if len(merged_weights) > 0:
        merged_mean = sample_mean(merged_weights)
        if merged_mean < unmerged_mean:
            midpoint = (merged_mean + unmerged_mean) / 2.0
            return edge_weight <= midpoint

    return edge_weight < (unmerged_mean - unmerged_stddev)
