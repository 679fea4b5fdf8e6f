"""
Decision tree model and raster prediction for land-cover classification.

This module provides:
- The `DecisionTree` model bundling a trained tree with its bands and label alphabet.
- Tile-based prediction of class codes and class probabilities over a Band Grid.
- YAML persistence of trained models.
- Export of the classification grid as a GeoTIFF with its legend.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd
import rasterio as rio
from rasterio.transform import from_origin
from rasterio.windows import Window
import xarray as xr
import yaml
from tqdm import tqdm

from landcover_tree.constants import CLASS_NODATA
from landcover_tree.exceptions import BandMismatchError
from landcover_tree.models.metrics import cohen_kappa, confusion_matrix, overall_accuracy
from landcover_tree.models.tree import *
from landcover_tree.training import TrainingSet

logger = logging.getLogger(__name__)

# ----------------------------------
# Model
# ----------------------------------
@dataclass(frozen=True)
class DecisionTree:
    """
    A trained tree together with the band order and label alphabet it was trained on.

    Class codes are 1-based positions in `classes`; `CLASS_NODATA` (0) marks
    pixels that could not be classified.
    """

    root: DecisionTreeNode
    band_names: tuple
    classes: tuple
    config: TreeConfig = field(default_factory=TreeConfig)

    @classmethod
    def fit(cls, training_set: TrainingSet, config: Optional[TreeConfig] = None, max_workers: int = 1) -> "DecisionTree":
        """Train a tree on `training_set` (see `train`)."""
        config = config or TreeConfig()
        root = train(training_set, config, max_workers=max_workers)
        return cls(root=root, band_names=training_set.band_names, classes=training_set.classes, config=config)

    @property
    def legend(self) -> Dict[int, str]:
        """Class code to label."""
        return {code: label for code, label in enumerate(self.classes, start=1)}

    def class_code(self, label: str) -> int:
        return self.classes.index(label) + 1

    def predict_vector(self, vector: Mapping[str, float]) -> str:
        """Label of a single feature vector (band name to value)."""
        return route(self.root, vector).label

    def describe(self) -> str:
        return describe_tree(self.root)

    def to_dict(self) -> dict:
        return {
            "band_names": list(self.band_names),
            "classes": list(self.classes),
            "config": self.config.to_dict(),
            "tree": node_to_dict(self.root)
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "DecisionTree":
        return cls(
            root=node_from_dict(data["tree"]),
            band_names=tuple(data["band_names"]),
            classes=tuple(data["classes"]),
            config=TreeConfig.from_dict(data.get("config") or {})
        )


def evaluate(model: DecisionTree, samples: TrainingSet) -> dict:
    """
    Score the model on labeled samples.

    Returns
    -------
    dict
        `confusion_matrix` (rows: reference, columns: predicted, alphabet order),
        `overall_accuracy` and `kappa`.
    """
    if samples.classes != model.classes:
        raise ValueError(f"Label alphabets differ: {samples.classes} vs {model.classes}")
    predicted = np.array([
        model.classes.index(model.predict_vector(dict(zip(samples.band_names, row))))
        for row in samples.features
    ], dtype=np.intp)
    return {
        "confusion_matrix": confusion_matrix(samples.labels, predicted, len(model.classes)),
        "overall_accuracy": overall_accuracy(samples.labels, predicted),
        "kappa": cohen_kappa(samples.labels, predicted)
    }


def save_model(model: DecisionTree, path) -> Path:
    """Write a trained model as YAML."""
    path = Path(path)
    path.parent.mkdir(exist_ok=True, parents=True)
    with open(path, "w") as f:
        yaml.safe_dump(model.to_dict(), f, sort_keys=False)
    return path


def load_model(path) -> DecisionTree:
    """Read a model written by `save_model`."""
    with open(path) as f:
        return DecisionTree.from_dict(yaml.safe_load(f))


# ----------------------------------
# Flattened tree for tile routing
# ----------------------------------
class FlatTree(NamedTuple):
    """Node arrays indexed by node id (root is 0). Leaves have `band_index` -1."""
    band_index: np.ndarray
    threshold: np.ndarray
    left: np.ndarray
    right: np.ndarray
    leaf_code: np.ndarray
    leaf_proba: np.ndarray


def flatten_tree(model: DecisionTree) -> FlatTree:
    """Number the nodes in pre-order and store them as parallel arrays."""
    band_lookup = {band: i for i, band in enumerate(model.band_names)}
    band_index: List[int] = []
    threshold: List[float] = []
    left: List[int] = []
    right: List[int] = []
    leaf_code: List[int] = []
    leaf_proba: List[np.ndarray] = []
    n_classes = len(model.classes)

    def add(node) -> int:
        node_id = len(band_index)
        band_index.append(-1)
        threshold.append(np.nan)
        left.append(-1)
        right.append(-1)
        leaf_code.append(CLASS_NODATA)
        leaf_proba.append(np.full(n_classes, np.nan))
        if node.is_leaf:
            counts = np.asarray(node.counts, dtype=float)
            leaf_code[node_id] = model.class_code(node.label)
            if counts.sum() > 0:
                leaf_proba[node_id] = counts / counts.sum()
        else:
            band_index[node_id] = band_lookup[node.band]
            threshold[node_id] = node.threshold
            left[node_id] = add(node.left)
            right[node_id] = add(node.right)
        return node_id

    add(model.root)
    return FlatTree(
        band_index=np.array(band_index, dtype=np.intp),
        threshold=np.array(threshold, dtype=float),
        left=np.array(left, dtype=np.intp),
        right=np.array(right, dtype=np.intp),
        leaf_code=np.array(leaf_code, dtype=np.uint16),
        leaf_proba=np.array(leaf_proba, dtype=np.float32).reshape(len(band_index), n_classes)
    )


def route_pixels(values: np.ndarray, flat: FlatTree) -> np.ndarray:
    """
    Walk every row of `values` (n_pixels, n_bands) from the root to its leaf.

    Returns the leaf node id of each pixel. All pixels advance one level per
    iteration; pixels already on a leaf stay there.
    """
    node_ids = np.zeros(values.shape[0], dtype=np.intp)
    active = np.arange(values.shape[0])
    while active.size:
        current = node_ids[active]
        internal = flat.band_index[current] >= 0
        active, current = active[internal], current[internal]
        if active.size == 0:
            break
        go_left = values[active, flat.band_index[current]] <= flat.threshold[current]
        node_ids[active] = np.where(go_left, flat.left[current], flat.right[current])
    return node_ids


# ----------------------------------
# Raster prediction
# ----------------------------------
def select_model_bands(grid: xr.DataArray, model: DecisionTree) -> xr.DataArray:
    """
    Reorder the grid bands to the model band order.

    Band coordinates are matched by their string form, so a grid with
    numeric band labels (e.g. `band=[1, 2]` from rioxarray) matches a model
    trained on features extracted from it.

    Raises
    ------
    BandMismatchError
        If a model band is absent from the grid.
    """
    available = [str(b) for b in grid.band.values]
    missing = [b for b in model.band_names if b not in available]
    if missing:
        raise BandMismatchError(missing, available)
    position = {band: i for i, band in enumerate(available)}
    selected = grid.isel(band=[position[b] for b in model.band_names])
    return selected.assign_coords(band=list(model.band_names)).transpose("band", "y", "x")


def tile_ranges(n_rows: int, tile_rows: int) -> List[Tuple[int, int]]:
    """Non-overlapping [start, stop) row ranges covering `n_rows`."""
    if tile_rows < 1:
        raise ValueError(f"tile_rows must be >= 1, got {tile_rows}")
    return [(start, min(start + tile_rows, n_rows)) for start in range(0, n_rows, tile_rows)]


def predict_tile(band_grid: xr.DataArray, flat: FlatTree, rows: Tuple[int, int]) -> np.ndarray:
    """
    Leaf node id of every pixel of a row range, -1 where a band value is missing.

    Returns
    -------
    np.ndarray
        Array of shape (stop - start, n_x).
    """
    start, stop = rows
    block = np.asarray(band_grid.isel(y=slice(start, stop)).values, dtype=float)
    n_bands, n_y, n_x = block.shape
    values = block.reshape(n_bands, n_y * n_x).T
    valid = ~np.isnan(values).any(axis=1)
    node_ids = np.full(n_y * n_x, -1, dtype=np.intp)
    node_ids[valid] = route_pixels(values[valid], flat)
    return node_ids.reshape(n_y, n_x)


def _predict_tiles(
    band_grid: xr.DataArray,
    flat: FlatTree,
    write: Callable[[Tuple[int, int], np.ndarray], None],
    tile_rows: int,
    max_workers: Optional[int],
    show_progress: bool
) -> None:
    """Run `predict_tile` over all row tiles and hand each result to `write` in tile order."""
    tiles = tile_ranges(band_grid.sizes["y"], tile_rows)
    with tqdm(total=len(tiles), desc="Predicting tiles", unit="tile", disable=not show_progress) as pbar:
        if max_workers == 1:
            for rows in tiles:
                write(rows, predict_tile(band_grid, flat, rows))
                pbar.update(1)
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = [executor.submit(predict_tile, band_grid, flat, rows) for rows in tiles]
                for rows, future in zip(tiles, futures):
                    write(rows, future.result())
                    pbar.update(1)


def _output_coords(grid: xr.DataArray) -> dict:
    return {name: coord for name, coord in grid.coords.items() if "band" not in coord.dims and name != "band"}


def predict(
    grid: xr.DataArray,
    model: DecisionTree,
    tile_rows: int = 256,
    max_workers: Optional[int] = None,
    show_progress: bool = False
) -> xr.DataArray:
    """
    Classify every pixel of a Band Grid.

    Parameters
    ----------
    grid : xr.DataArray
        Band Grid with dims (band, y, x) and band names as `band` coordinate.
        Bands not used by the model are ignored.
    model : DecisionTree
        Trained model. It is only read.
    tile_rows : int, optional
        Number of rows per tile.
    max_workers : int, optional
        Threads used over tiles. 1 runs sequentially; None uses the
        `ThreadPoolExecutor` default. The output does not depend on it.
    show_progress : bool, optional
        Display a `tqdm` progress bar.

    Returns
    -------
    xr.DataArray
        uint16 grid (y, x) of class codes, `CLASS_NODATA` where any model band
        is missing. Attributes hold `nodata` and the `legend`.

    Raises
    ------
    BandMismatchError
        If a model band is absent from the grid.
    """
    band_grid = select_model_bands(grid, model)
    flat = flatten_tree(model)
    out = np.full((band_grid.sizes["y"], band_grid.sizes["x"]), CLASS_NODATA, dtype=np.uint16)

    def write(rows, node_ids):
        start, stop = rows
        out[start:stop] = np.where(node_ids >= 0, flat.leaf_code[node_ids], CLASS_NODATA)

    _predict_tiles(band_grid, flat, write, tile_rows, max_workers, show_progress)
    n_missing = int((out == CLASS_NODATA).sum())
    if n_missing:
        logger.info("%d of %d pixel(s) left unclassified (missing band values)", n_missing, out.size)
    return xr.DataArray(
        out,
        dims=("y", "x"),
        coords=_output_coords(band_grid),
        name="land_cover",
        attrs={"nodata": CLASS_NODATA, "legend": model.legend}
    )


def predict_proba(
    grid: xr.DataArray,
    model: DecisionTree,
    tile_rows: int = 256,
    max_workers: Optional[int] = None,
    show_progress: bool = False
) -> xr.DataArray:
    """
    Class frequencies of the leaf reached by every pixel.

    Same tiling and failure modes as `predict`.

    Returns
    -------
    xr.DataArray
        float32 grid (class, y, x), NaN where any model band is missing.
    """
    band_grid = select_model_bands(grid, model)
    flat = flatten_tree(model)
    out = np.full((len(model.classes), band_grid.sizes["y"], band_grid.sizes["x"]), np.nan, dtype=np.float32)

    def write(rows, node_ids):
        start, stop = rows
        proba = flat.leaf_proba[np.where(node_ids >= 0, node_ids, 0)]
        proba[node_ids < 0] = np.nan
        out[:, start:stop, :] = np.moveaxis(proba, -1, 0)

    _predict_tiles(band_grid, flat, write, tile_rows, max_workers, show_progress)
    coords = _output_coords(band_grid)
    coords["class"] = list(model.classes)
    return xr.DataArray(out, dims=("class", "y", "x"), coords=coords, name="class_probability")


# ----------------------------------
# Export
# ----------------------------------
def legend_path_for(output_path) -> Path:
    output_path = Path(output_path)
    return output_path.with_name(output_path.stem + "_legend.csv")


def write_classification(classified: xr.DataArray, output_path, crs=None, transform=None, block_rows: int = 512) -> Path:
    """
    Export a classification grid as a GeoTIFF and its legend as CSV.

    Parameters
    ----------
    classified : xr.DataArray
        Output of `predict`.
    output_path : str or Path
        Destination GeoTIFF.
    crs : rasterio.crs.CRS or str, optional
        Coordinate reference system of the output.
    transform : affine.Affine, optional
        GeoTransform defining pixel coordinates.
    block_rows : int, optional
        Rows written per window.

    Returns
    -------
    Path
        Path of the GeoTIFF. The legend is written next to it as `<stem>_legend.csv`.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(exist_ok=True, parents=True)
    data = np.asarray(classified.values, dtype=np.uint16)
    ty, tx = data.shape
    legend = classified.attrs.get("legend", {})
    profile = {
        "driver": "GTiff",
        "height": ty,
        "width": tx,
        "count": 1,
        "dtype": "uint16",
        "nodata": classified.attrs.get("nodata", CLASS_NODATA),
        "crs": crs,
        "transform": transform if transform is not None else from_origin(0, ty, 1, 1),
        "compress": "deflate"
    }
    with rio.open(output_path, "w", **profile) as dst:
        for start, stop in tile_ranges(ty, block_rows):
            dst.write(data[start:stop], 1, window=Window(0, start, tx, stop - start))
        dst.update_tags(1, **{f"class_{code}": label for code, label in legend.items()})
    pd.DataFrame(
        {"code": list(legend.keys()), "label": list(legend.values())}
    ).to_csv(legend_path_for(output_path), index=False)
    logger.info("Wrote classification to %s", output_path)
    return output_path
