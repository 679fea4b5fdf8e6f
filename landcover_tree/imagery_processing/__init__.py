"""
Image processing functions for the land-cover classification pipeline.

This module handles:
- Loading single-band rasters into one multi-band grid
- Rescaling raw digital numbers to percent reflectance
- Sampling band values at training point locations

Grids are xarray.DataArray objects with dims (band, y, x) and NaN as the
missing-value marker. They can be numpy- or Dask-backed; the rescaling stays
lazy on Dask arrays.
"""

import logging
import numpy as np
import xarray as xr
import pandas as pd
from pathlib import Path
from typing import Mapping, Optional

from landcover_tree.constants import LANDSAT_REFLECTANCE
from landcover_tree.exceptions import InvalidRangeError
from landcover_tree.imagery_processing.helper import *

logger = logging.getLogger(__name__)

# ---------------------------
# Band loading
# ---------------------------
def load_band_stack(band_paths: Mapping[str, Path], chunks: Optional[int] = None) -> xr.DataArray:
    """
    Load single-band rasters and stack them into a Band Grid.

    Parameters
    ----------
    band_paths : mapping of str to Path
        Band name to raster file. Insertion order defines the band order.
    chunks : int, optional
        Dask chunk size along y and x. Loads eagerly when None.

    Returns
    -------
    xr.DataArray
        Grid with dims (band, y, x). File no-data values are NaN.
    """
    bands = {}
    for band, path in band_paths.items():
        logger.debug("Opening band %s from %s", band, path)
        bands[band] = open_band(path, chunks=chunks)
    grid = stack_bands(bands)
    # Keep the georeferencing of the first band on the stack
    first = next(iter(bands.values()))
    if first.rio.crs is not None:
        grid = grid.rio.write_crs(first.rio.crs).rio.write_transform(first.rio.transform())
    logger.info("Loaded %d band(s) on a %d x %d grid", grid.sizes["band"], grid.sizes["y"], grid.sizes["x"])
    return grid

# ---------------------------
# Reflectance normalization
# ---------------------------
def normalize_reflectance(
    grid: xr.DataArray,
    lo: float = LANDSAT_REFLECTANCE['lo'],
    hi: float = LANDSAT_REFLECTANCE['hi'],
    scale: float = LANDSAT_REFLECTANCE['scale'],
    offset: float = LANDSAT_REFLECTANCE['offset'],
    nodata=None
) -> xr.DataArray:
    """
    Rescale raw sensor values to percent reflectance.

    Each value `v` inside [lo, hi] becomes `(v * scale + offset) * 100`; values
    outside the range, equal to `nodata` or already NaN become NaN. Bands are
    masked independently of each other.

    Parameters
    ----------
    grid : xr.DataArray
        Raw Band Grid.
    lo, hi : float
        Inclusive valid range of the raw values.
    scale, offset : float
        Multiplicative scale and additive offset of the sensor product.
    nodata : optional
        Declared no-data marker of the raw grid.

    Returns
    -------
    xr.DataArray
        New float grid with the same dims and coordinates.

    Raises
    ------
    InvalidRangeError
        If `lo >= hi`.
    """
    if lo >= hi:
        raise InvalidRangeError(lo, hi)
    valid = valid_range_mask(grid, lo, hi, nodata)
    normed = ((grid * scale + offset) * 100).where(valid)
    normed.attrs = {**grid.attrs, 'units': 'percent reflectance'}
    normed.name = grid.name
    return normed

# ---------------------------
# Sample extraction
# ---------------------------
def extract_band_values(
    grid: xr.DataArray,
    points: pd.DataFrame,
    x_col: str = "x",
    y_col: str = "y",
    id_col: str = "id"
) -> pd.DataFrame:
    """
    Sample the grid at point locations (nearest cell).

    Parameters
    ----------
    grid : xr.DataArray
        Band Grid with `x` and `y` coordinates in the points' reference system.
    points : pd.DataFrame
        One row per sample with its id and coordinates.
    x_col, y_col, id_col : str
        Column names of the coordinates and the sample id.

    Returns
    -------
    pd.DataFrame
        Feature vectors indexed by sample id, one column per band. Points
        outside the grid get NaN for every band.
    """
    xs = points[x_col].to_numpy(dtype=float)
    ys = points[y_col].to_numpy(dtype=float)
    sampled = grid.sel(
        x=xr.DataArray(xs, dims="sample"),
        y=xr.DataArray(ys, dims="sample"),
        method="nearest"
    )
    values = np.array(sampled.transpose("sample", "band").values, dtype=float)
    inside = points_inside_grid(grid, xs, ys)
    if not inside.all():
        logger.warning("%d sample point(s) fall outside the grid", int((~inside).sum()))
    values[~inside] = np.nan
    return pd.DataFrame(
        values,
        index=pd.Index(points[id_col].to_numpy(), name=id_col),
        columns=[str(b) for b in grid.band.values]
    )
