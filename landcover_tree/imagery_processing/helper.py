"""
Helper functions for raster imagery processing in the land-cover pipeline.

Includes:
- File path retrieval for the input band rasters
- Stacking single-band arrays into a (band, y, x) grid
- Valid-range masking
- Locating sample points on the grid

All functions are designed to handle large raster datasets efficiently,
leveraging Dask and xarray where appropriate.
"""

import numpy as np
import xarray as xr
import pandas as pd
import rioxarray
from pathlib import Path
from typing import Mapping, Optional

# ---------------------------
# Input image paths
# ---------------------------

def get_input_image_dir_path(cfg) -> Path:
    """
    Retrieve the input image directory from the configuration.

    Returns
    -------
    Path
        Path to the folder containing input images.

    Raises
    ------
    ValueError
        If the input directory is not set in the config.
    FileNotFoundError
        If the folder does not exist on disk.
    """
    input_image_dir_path = cfg.get('paths', {}).get('input_image_dir', None)
    if input_image_dir_path is None:
        raise ValueError('Path to input image folder not set in the configuration file.')
    input_image_dir_path = Path(input_image_dir_path)
    if not input_image_dir_path.exists():
        raise FileNotFoundError(
            f'Path to input image folder does not exist: {input_image_dir_path.resolve().absolute()}'
        )
    return input_image_dir_path

def get_band_path(band: str, cfg) -> Path:
    """Return the file path for a band raster."""
    input_image_dir_path = get_input_image_dir_path(cfg)
    pattern = cfg.get('paths', {}).get('band_file_pattern', '{band}.tif')
    path = input_image_dir_path / pattern.format(band=band)
    if not path.exists():
        raise FileNotFoundError(f'Path to input image does not exist: {path.resolve().absolute()}')
    return path

# ---------------------------
# Grid construction
# ---------------------------

def stack_bands(bands: Mapping[str, xr.DataArray]) -> xr.DataArray:
    """
    Stack single-band rasters into a Band Grid with dims (band, y, x).

    Parameters
    ----------
    bands : mapping of str to xr.DataArray or np.ndarray
        Band name to 2D raster. Insertion order defines the band order.

    Returns
    -------
    xr.DataArray
        Grid with a `band` coordinate holding the band names.

    Raises
    ------
    ValueError
        If no band is given or the bands do not share the same shape.
    """
    if not bands:
        raise ValueError('At least one band is required to build a grid.')
    arrays = []
    for name, band in bands.items():
        if not isinstance(band, xr.DataArray):
            band = xr.DataArray(np.asarray(band), dims=("y", "x"))
        if band.ndim != 2:
            raise ValueError(f"Band '{name}' must be 2D, got shape {band.shape}")
        arrays.append(band)
    shapes = {a.shape for a in arrays}
    if len(shapes) > 1:
        raise ValueError(f"All bands must share the same shape, got {sorted(shapes)}")
    return xr.concat(arrays, dim=pd.Index(list(bands), name="band"))

def open_band(path, chunks: Optional[int] = None) -> xr.DataArray:
    """Open a single-band raster lazily, masking its declared no-data value as NaN."""
    kwargs = {'masked': True}
    if chunks is not None:
        kwargs['chunks'] = (1, chunks, chunks)
    xds = rioxarray.open_rasterio(path, **kwargs)
    return xds.squeeze("band", drop=True)

# ---------------------------
# Masking
# ---------------------------

def valid_range_mask(grid: xr.DataArray, lo: float, hi: float, nodata=None) -> xr.DataArray:
    """
    Boolean mask of cells inside [lo, hi] and different from `nodata`.

    NaN cells are never valid since comparisons with NaN are False.
    """
    valid = (grid >= lo) & (grid <= hi)
    if nodata is not None:
        valid = valid & (grid != nodata)
    return valid

def half_pixel(coord: np.ndarray) -> float:
    """Half the spacing of a regular coordinate vector (0.5 for a single cell)."""
    if coord.size < 2:
        return 0.5
    return abs(float(coord[1]) - float(coord[0])) / 2

def points_inside_grid(grid: xr.DataArray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Whether each (x, y) point falls inside the footprint of the grid cells."""
    x, y = np.asarray(grid.x.values, dtype=float), np.asarray(grid.y.values, dtype=float)
    hx, hy = half_pixel(x), half_pixel(y)
    inside_x = (xs >= x.min() - hx) & (xs <= x.max() + hx)
    inside_y = (ys >= y.min() - hy) & (ys <= y.max() + hy)
    return inside_x & inside_y
