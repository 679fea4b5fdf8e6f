"""
Impurity measures and split search for the CART decision tree.

Counts are passed as arrays whose last axis holds the per-class sample
counts, so a single call scores every candidate split of a band at once.
"""

import numpy as np
from dataclasses import dataclass
from typing import Callable, Optional


# ----------------------------------
# Impurity measures
# ----------------------------------
def gini(counts: np.ndarray) -> np.ndarray:
    """Gini impurity 1 - sum(p_k^2). Empty partitions score 0."""
    counts = np.asarray(counts, dtype=float)
    n = counts.sum(axis=-1, keepdims=True)
    p = np.divide(counts, n, out=np.zeros_like(counts), where=n > 0)
    return np.where(n[..., 0] > 0, 1.0 - np.sum(p ** 2, axis=-1), 0.0)


def entropy(counts: np.ndarray) -> np.ndarray:
    """Shannon entropy -sum(p_k log2 p_k). Empty partitions score 0."""
    counts = np.asarray(counts, dtype=float)
    n = counts.sum(axis=-1, keepdims=True)
    p = np.divide(counts, n, out=np.zeros_like(counts), where=n > 0)
    logp = np.log2(p, out=np.zeros_like(p), where=p > 0)
    return -np.sum(p * logp, axis=-1)


IMPURITY_FUNCTIONS = {
    'gini': gini,
    'entropy': entropy,
}


def get_impurity_function(name: str) -> Callable[[np.ndarray], np.ndarray]:
    try:
        return IMPURITY_FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown impurity measure: {name}. Choose one of {sorted(IMPURITY_FUNCTIONS)}")


# ----------------------------------
# Split search
# ----------------------------------
@dataclass(frozen=True)
class Split:
    """Best (band, threshold) pair of a node and its weighted child impurity."""
    band_index: int
    threshold: float
    impurity: float
    n_left: int


def midpoint(lower: float, upper: float) -> float:
    """Threshold between two consecutive distinct values, kept in [lower, upper)."""
    threshold = (lower + upper) / 2.0
    # Float rounding can land the midpoint on the upper value
    if threshold >= upper:
        threshold = lower
    return float(threshold)


def best_split(
    features: np.ndarray,
    labels: np.ndarray,
    n_classes: int,
    impurity_fn: Callable[[np.ndarray], np.ndarray],
    min_samples_leaf: int = 1
) -> Optional[Split]:
    """
    Find the split minimizing the size-weighted impurity of the two children.

    Each band is sorted once; prefix sums of the one-hot labels give the class
    counts on the left of every position. Candidate thresholds are the
    midpoints between consecutive distinct values.

    Parameters
    ----------
    features : np.ndarray
        Array (n_samples, n_bands) of the samples reaching the node.
    labels : np.ndarray
        Class index of each sample.
    n_classes : int
        Size of the label alphabet.
    impurity_fn : callable
        One of the functions of `IMPURITY_FUNCTIONS`.
    min_samples_leaf : int, optional
        Minimum number of samples on each side of the split.

    Returns
    -------
    Split or None
        Best split, ties broken by lowest band index then lowest threshold.
        None when no band has two distinct values satisfying `min_samples_leaf`.
    """
    n_samples, n_bands = features.shape
    if n_samples < 2:
        return None
    one_hot = np.eye(n_classes, dtype=np.int64)[labels]
    total = one_hot.sum(axis=0)
    n_left = np.arange(1, n_samples)
    size_ok = (n_left >= min_samples_leaf) & (n_samples - n_left >= min_samples_leaf)

    best = None
    for band_index in range(n_bands):
        order = np.argsort(features[:, band_index], kind="mergesort")
        values = features[order, band_index]
        candidates = np.flatnonzero((values[:-1] < values[1:]) & size_ok)
        if candidates.size == 0:
            continue
        left_counts = np.cumsum(one_hot[order], axis=0)[candidates]
        right_counts = total - left_counts
        nl = n_left[candidates]
        weighted = (nl * impurity_fn(left_counts) + (n_samples - nl) * impurity_fn(right_counts)) / n_samples
        j = int(np.argmin(weighted))
        if best is None or weighted[j] < best.impurity:
            i = candidates[j]
            best = Split(
                band_index=band_index,
                threshold=midpoint(values[i], values[i + 1]),
                impurity=float(weighted[j]),
                n_left=int(nl[j])
            )
    return best
