"""
Exceptions raised by the land-cover classification engine.

Hierarchy::

    LandCoverTreeError                   <- catch-all base
    ├── InvalidRangeError                <- lo >= hi for the reflectance range
    ├── JoinKeyMismatchError             <- sample id without a label
    ├── EmptyTrainingSetError            <- nothing survived filtering
    ├── BandMismatchError                <- model band absent from the grid
    └── MissingValueError                <- per-pixel missing data

Configuration errors are raised immediately. Missing pixel or sample values
are not errors: they are dropped while building the training set and show up
as ``CLASS_NODATA`` in the prediction. ``MissingValueError`` names that
condition for callers that want to flag it themselves.
"""

from __future__ import annotations

from typing import Iterable


class LandCoverTreeError(Exception):
    """Base exception for the classification engine.

    Parameters
    ----------
    message : str
        Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class InvalidRangeError(LandCoverTreeError, ValueError):
    """Raised when a valid value range is empty or inverted."""

    def __init__(self, lo: float, hi: float) -> None:
        super().__init__(f"Invalid value range: lo ({lo}) must be strictly lower than hi ({hi}).")
        self.lo = lo
        self.hi = hi


class JoinKeyMismatchError(LandCoverTreeError):
    """Raised when extracted feature vectors have ids missing from the label table.

    Parameters
    ----------
    missing_keys : iterable
        Sample ids without a matching label.
    """

    def __init__(self, missing_keys: Iterable) -> None:
        self.missing_keys = list(missing_keys)
        shown = ", ".join(repr(k) for k in self.missing_keys[:10])
        if len(self.missing_keys) > 10:
            shown += ", ..."
        super().__init__(
            f"{len(self.missing_keys)} sample id(s) have no matching label: {shown}"
        )


class EmptyTrainingSetError(LandCoverTreeError):
    """Raised when no labeled sample survives missing-value filtering."""


class BandMismatchError(LandCoverTreeError):
    """Raised when a grid lacks bands the model was trained on.

    Parameters
    ----------
    missing_bands : iterable of str
        Model bands not found in the grid.
    available : iterable of str
        Bands present in the grid.
    """

    def __init__(self, missing_bands: Iterable[str], available: Iterable[str]) -> None:
        self.missing_bands = list(missing_bands)
        self.available = list(available)
        super().__init__(
            f"Band(s) {self.missing_bands} required by the model are absent from the grid. "
            f"Available bands: {self.available}"
        )


class MissingValueError(LandCoverTreeError):
    """Marks a pixel or sample whose band values are missing."""
