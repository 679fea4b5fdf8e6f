"""
Label helpers for the training set builder.

The label alphabet is the lexicographically sorted set of distinct labels.
Integer class codes everywhere downstream are indices into this alphabet, so
identical inputs always give identical codes.
"""

import numpy as np
import pandas as pd
from typing import Iterable, Optional, Sequence


def coerce_label(raw) -> Optional[str]:
    """Turn a raw label into a clean string, or None when it is missing or blank."""
    if raw is None or (not isinstance(raw, str) and pd.isna(raw)):
        return None
    # Numeric columns read with NaN holes come back as floats
    if isinstance(raw, (float, np.floating)) and float(raw).is_integer():
        raw = int(raw)
    label = str(raw).strip()
    return label or None


def label_alphabet(labels: Iterable[str]) -> tuple:
    """Deterministic (sorted) tuple of the distinct labels."""
    return tuple(sorted(set(labels)))


def encode_labels(labels: Sequence[str], classes: Sequence[str]) -> np.ndarray:
    """Map labels to their index in `classes`."""
    index = {label: i for i, label in enumerate(classes)}
    return np.array([index[label] for label in labels], dtype=np.intp)
