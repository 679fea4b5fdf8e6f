"""
CART decision tree induction.

A tree is a write-once structure of two node kinds: ``InternalNode`` holds a
band name, a threshold and its two children (``<= threshold`` on the left,
``> threshold`` on the right); ``LeafNode`` holds the predicted label and the
per-class counts of the training samples that reached it. Nodes own their
children directly and are immutable, so a trained tree can be shared by any
number of prediction workers.
"""

import dataclasses
import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, NamedTuple, Optional, Union

import numpy as np

from landcover_tree.constants import IMPURITY_MEASURES, MIN_IMPURITY_DECREASE
from landcover_tree.exceptions import EmptyTrainingSetError
from landcover_tree.models.helper import best_split, get_impurity_function
from landcover_tree.training import TrainingSet

logger = logging.getLogger(__name__)


# ----------------------------------
# Configuration
# ----------------------------------
@dataclass(frozen=True)
class TreeConfig:
    """
    Stopping rules and impurity measure of the tree induction.

    Attributes
    ----------
    max_depth : int or None
        Maximum depth (root at depth 0). None grows until another rule stops.
    min_samples_split : int
        Nodes with fewer samples become leaves.
    min_samples_leaf : int
        Minimum number of samples on each side of a split.
    impurity : str
        "gini" or "entropy".
    """

    max_depth: Optional[int] = None
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    impurity: str = "gini"

    def __post_init__(self):
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0 or None, got {self.max_depth}")
        if self.min_samples_split < 2:
            raise ValueError(f"min_samples_split must be >= 2, got {self.min_samples_split}")
        if self.min_samples_leaf < 1:
            raise ValueError(f"min_samples_leaf must be >= 1, got {self.min_samples_leaf}")
        if self.impurity not in IMPURITY_MEASURES:
            raise ValueError(f"Unknown impurity measure: {self.impurity}. Choose one of {list(IMPURITY_MEASURES)}")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "TreeConfig":
        """Build from a mapping, ignoring keys that are not tree options."""
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in names and (v is not None or k == "max_depth")})

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# ----------------------------------
# Nodes
# ----------------------------------
@dataclass(frozen=True)
class LeafNode:
    """Terminal node: predicted label and class counts (alphabet order)."""
    label: str
    counts: tuple

    is_leaf = True

    @property
    def n_samples(self) -> int:
        return int(sum(self.counts))


@dataclass(frozen=True)
class InternalNode:
    """Decision node: samples with ``band <= threshold`` go left, the others right."""
    band: str
    threshold: float
    left: "DecisionTreeNode"
    right: "DecisionTreeNode"

    is_leaf = False


DecisionTreeNode = Union[InternalNode, LeafNode]


class _Fork(NamedTuple):
    # Split whose children may still be running in the thread pool
    band: str
    threshold: float
    left: Any
    right: Any


# ----------------------------------
# Induction
# ----------------------------------
class _TreeBuilder:
    """Recursive partitioning over index subsets of one training set."""

    def __init__(self, samples: TrainingSet, config: TreeConfig):
        self.features = samples.features
        self.labels = samples.labels
        self.band_names = samples.band_names
        self.classes = samples.classes
        self.config = config
        self.impurity_fn = get_impurity_function(config.impurity)

    def leaf(self, counts: np.ndarray) -> LeafNode:
        # argmax returns the first maximum, i.e. the earliest label in the alphabet
        return LeafNode(label=self.classes[int(np.argmax(counts))], counts=tuple(int(c) for c in counts))

    def split_or_leaf(self, idx: np.ndarray, depth: int):
        """Return a LeafNode, or the chosen split and the left-partition mask."""
        counts = np.bincount(self.labels[idx], minlength=len(self.classes))
        n = idx.size
        if (
            n == 0
            or np.count_nonzero(counts) <= 1
            or n < self.config.min_samples_split
            or (self.config.max_depth is not None and depth >= self.config.max_depth)
        ):
            return self.leaf(counts)
        split = best_split(
            self.features[idx], self.labels[idx], len(self.classes),
            self.impurity_fn, self.config.min_samples_leaf
        )
        parent_impurity = float(self.impurity_fn(counts))
        if split is None or split.impurity > parent_impurity - MIN_IMPURITY_DECREASE:
            return self.leaf(counts)
        goes_left = self.features[idx, split.band_index] <= split.threshold
        return split, goes_left

    def grow(self, idx: np.ndarray, depth: int) -> DecisionTreeNode:
        result = self.split_or_leaf(idx, depth)
        if isinstance(result, LeafNode):
            return result
        split, goes_left = result
        return InternalNode(
            band=self.band_names[split.band_index],
            threshold=split.threshold,
            left=self.grow(idx[goes_left], depth + 1),
            right=self.grow(idx[~goes_left], depth + 1)
        )

    def grow_forked(self, idx: np.ndarray, depth: int, executor: ThreadPoolExecutor, fork_depth: int):
        """Like `grow`, but hands every subtree rooted at `fork_depth` to the executor."""
        if depth >= fork_depth:
            return executor.submit(self.grow, idx, depth)
        result = self.split_or_leaf(idx, depth)
        if isinstance(result, LeafNode):
            return result
        split, goes_left = result
        return _Fork(
            band=self.band_names[split.band_index],
            threshold=split.threshold,
            left=self.grow_forked(idx[goes_left], depth + 1, executor, fork_depth),
            right=self.grow_forked(idx[~goes_left], depth + 1, executor, fork_depth)
        )


def _join(node) -> DecisionTreeNode:
    if isinstance(node, Future):
        return node.result()
    if isinstance(node, _Fork):
        return InternalNode(node.band, node.threshold, _join(node.left), _join(node.right))
    return node


def train(samples: TrainingSet, config: Optional[TreeConfig] = None, max_workers: int = 1) -> DecisionTreeNode:
    """
    Grow a binary classification tree by recursive impurity-minimizing splits.

    Parameters
    ----------
    samples : TrainingSet
        Labeled feature vectors.
    config : TreeConfig, optional
        Stopping rules and impurity measure. Defaults to `TreeConfig()`.
    max_workers : int, optional
        Threads used to build independent subtrees concurrently. The
        resulting tree does not depend on this value.

    Returns
    -------
    DecisionTreeNode
        Root of the tree.

    Raises
    ------
    EmptyTrainingSetError
        If the training set has no label alphabet.
    """
    config = config or TreeConfig()
    if not samples.classes:
        raise EmptyTrainingSetError("Cannot train a tree without any class.")
    builder = _TreeBuilder(samples, config)
    idx = np.arange(samples.n_samples)
    if max_workers is None or max_workers <= 1:
        root = builder.grow(idx, 0)
    else:
        fork_depth = max(1, math.ceil(math.log2(max_workers)))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            root = _join(builder.grow_forked(idx, 0, executor, fork_depth))
    logger.info("Trained tree: %d leaves, depth %d (%s)", count_leaves(root), tree_depth(root), config.impurity)
    return root


# ----------------------------------
# Inspection
# ----------------------------------
def route(node: DecisionTreeNode, vector: Mapping[str, float]) -> LeafNode:
    """Walk a single feature vector from `node` down to its leaf."""
    while not node.is_leaf:
        node = node.left if vector[node.band] <= node.threshold else node.right
    return node


def iter_leaves(node: DecisionTreeNode) -> Iterator[LeafNode]:
    """Leaves from left to right."""
    if node.is_leaf:
        yield node
    else:
        yield from iter_leaves(node.left)
        yield from iter_leaves(node.right)


def count_leaves(node: DecisionTreeNode) -> int:
    return sum(1 for _ in iter_leaves(node))


def tree_depth(node: DecisionTreeNode) -> int:
    if node.is_leaf:
        return 0
    return 1 + max(tree_depth(node.left), tree_depth(node.right))


def describe_tree(node: DecisionTreeNode, decimals: int = 2) -> str:
    """
    Text rendering of the tree, one rule per line::

        |--- red <= 43.50
        |   |--- class: water (2)
        |--- red >  43.50
        |   |--- class: urban (2)
    """
    lines = []

    def walk(n, depth):
        indent = "|   " * depth + "|--- "
        if n.is_leaf:
            lines.append(f"{indent}class: {n.label} ({n.n_samples})")
            return
        lines.append(f"{indent}{n.band} <= {n.threshold:.{decimals}f}")
        walk(n.left, depth + 1)
        lines.append(f"{indent}{n.band} >  {n.threshold:.{decimals}f}")
        walk(n.right, depth + 1)

    walk(node, 0)
    return "\n".join(lines)


# ----------------------------------
# Serialization
# ----------------------------------
def node_to_dict(node: DecisionTreeNode) -> Dict[str, Any]:
    if node.is_leaf:
        return {"label": node.label, "counts": list(node.counts)}
    return {
        "band": node.band,
        "threshold": float(node.threshold),
        "left": node_to_dict(node.left),
        "right": node_to_dict(node.right)
    }


def node_from_dict(data: Mapping[str, Any]) -> DecisionTreeNode:
    if "label" in data:
        return LeafNode(label=str(data["label"]), counts=tuple(int(c) for c in data["counts"]))
    return InternalNode(
        band=str(data["band"]),
        threshold=float(data["threshold"]),
        left=node_from_dict(data["left"]),
        right=node_from_dict(data["right"])
    )
