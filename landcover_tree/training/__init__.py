"""
Training set construction for the decision tree.

Feature vectors extracted at sample locations are joined to their labels on
the sample id, incomplete samples are dropped and the label alphabet is pinned
to a deterministic order.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from landcover_tree.exceptions import (
    BandMismatchError,
    EmptyTrainingSetError,
    JoinKeyMismatchError,
)
from landcover_tree.training.helper import coerce_label, encode_labels, label_alphabet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class TrainingSet:
    """
    Labeled feature vectors ready for tree induction.

    Attributes
    ----------
    features : np.ndarray
        Float array of shape (n_samples, n_bands) without missing values.
    labels : np.ndarray
        Index of each sample's label in `classes`.
    band_names : tuple of str
        Column order of `features`.
    classes : tuple of str
        Label alphabet, sorted.
    sample_ids : tuple
        Id of each row, in the order of `features`.
    """

    features: np.ndarray
    labels: np.ndarray
    band_names: tuple
    classes: tuple
    sample_ids: tuple = ()

    @property
    def n_samples(self) -> int:
        return self.features.shape[0]

    @property
    def n_bands(self) -> int:
        return self.features.shape[1]

    def class_counts(self) -> dict:
        counts = np.bincount(self.labels, minlength=len(self.classes))
        return {label: int(n) for label, n in zip(self.classes, counts)}

    def to_frame(self) -> pd.DataFrame:
        """Features and label names as a DataFrame indexed by sample id."""
        df = pd.DataFrame(self.features, columns=list(self.band_names))
        if self.sample_ids:
            df.index = pd.Index(self.sample_ids, name="id")
        df["label"] = [self.classes[i] for i in self.labels]
        return df

    @classmethod
    def from_records(cls, records: Sequence[Mapping], label_key: str = "label") -> "TrainingSet":
        """
        Build a training set from in-memory records such as
        ``{"red": 10, "green": 20, "label": "water"}``.

        Band order follows the keys of the first record. Record positions are
        used as sample ids.
        """
        if not records:
            raise EmptyTrainingSetError("No training record given.")
        band_names = [k for k in records[0] if k != label_key]
        features = pd.DataFrame([{b: r.get(b, np.nan) for b in band_names} for r in records])
        labels = pd.Series([r.get(label_key) for r in records], index=features.index)
        return build_training_set(features, labels, band_names)


def build_training_set(
    features: pd.DataFrame,
    labels: Union[pd.Series, Mapping],
    band_names: Optional[Sequence[str]] = None
) -> TrainingSet:
    """
    Join extracted feature vectors to their labels.

    Parameters
    ----------
    features : pd.DataFrame
        Feature vectors indexed by sample id, one column per band.
    labels : pd.Series or mapping
        Raw label per sample id.
    band_names : sequence of str, optional
        Bands to keep, in order. Defaults to all columns of `features`.

    Returns
    -------
    TrainingSet
        Complete samples with labels encoded against the sorted alphabet.

    Raises
    ------
    JoinKeyMismatchError
        If a feature vector's id has no label.
    BandMismatchError
        If a requested band is not a column of `features`.
    EmptyTrainingSetError
        If no sample is left after dropping missing values.
    """
    if not isinstance(labels, pd.Series):
        labels = pd.Series(dict(labels), dtype=object)
    if labels.index.has_duplicates:
        dupes = labels.index[labels.index.duplicated()].unique().tolist()
        raise ValueError(f"Label table has duplicated sample ids: {dupes[:10]}")

    band_names = list(features.columns if band_names is None else band_names)
    absent = [b for b in band_names if b not in features.columns]
    if absent:
        raise BandMismatchError(absent, [str(c) for c in features.columns])

    missing_keys = [key for key in features.index if key not in labels.index]
    if missing_keys:
        raise JoinKeyMismatchError(missing_keys)

    values = features[band_names].to_numpy(dtype=float)
    raw_labels = labels.reindex(features.index).to_numpy(dtype=object)
    clean_labels = [coerce_label(raw) for raw in raw_labels]

    complete = ~np.isnan(values).any(axis=1)
    has_label = np.array([label is not None for label in clean_labels], dtype=bool)
    keep = complete & has_label
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info(
            "Dropped %d of %d sample(s): %d with missing band values, %d without label",
            n_dropped, len(keep), int((~complete).sum()), int((complete & ~has_label).sum())
        )
    if not keep.any():
        raise EmptyTrainingSetError(
            f"No training sample left after filtering {len(keep)} sample(s) with missing values."
        )

    kept_labels = [label for label, k in zip(clean_labels, keep) if k]
    classes = label_alphabet(kept_labels)
    training_set = TrainingSet(
        features=values[keep],
        labels=encode_labels(kept_labels, classes),
        band_names=tuple(str(b) for b in band_names),
        classes=classes,
        sample_ids=tuple(features.index[keep])
    )
    logger.info("Training set: %d sample(s), %d band(s), classes %s",
                training_set.n_samples, training_set.n_bands, training_set.class_counts())
    return training_set
