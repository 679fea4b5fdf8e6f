"""
Metrics module for the land-cover classifier.

Accuracy measures computed on integer class indices, wrapping scikit-learn:
- Confusion matrix
- Overall accuracy
- Cohen's kappa
"""

import numpy as np
from sklearn.metrics import accuracy_score, cohen_kappa_score
from sklearn.metrics import confusion_matrix as sk_confusion_matrix


def confusion_matrix(y_true: np.ndarray, y_pred: np.ndarray, n_classes: int) -> np.ndarray:
    """
    Count matrix with reference classes as rows and predicted classes as columns.

    Parameters
    ----------
    y_true, y_pred : np.ndarray
        Class indices in [0, n_classes).
    n_classes : int
        Size of the label alphabet. Classes absent from both inputs still
        get a row and a column.

    Returns
    -------
    np.ndarray
        Integer array of shape (n_classes, n_classes).

    Raises
    ------
    ValueError
        If the two inputs differ in length.
    """
    return sk_confusion_matrix(y_true, y_pred, labels=np.arange(n_classes))


def overall_accuracy(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Share of samples whose predicted class is the reference class."""
    return float(accuracy_score(y_true, y_pred))


def cohen_kappa(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Agreement corrected for chance, (p_o - p_e) / (1 - p_e)."""
    return float(cohen_kappa_score(y_true, y_pred))
