import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin


def write_band(path, data, transform=None, nodata=0, crs="EPSG:32633"):
    """Write a single-band GeoTIFF and return its path."""
    data = np.asarray(data)
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype.name,
        crs=crs,
        transform=transform if transform is not None else from_origin(100, 104, 1, 1),
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return path


@pytest.fixture
def example_records():
    return [
        {"red": 10, "green": 20, "label": "water"},
        {"red": 80, "green": 15, "label": "urban"},
        {"red": 12, "green": 22, "label": "water"},
        {"red": 75, "green": 18, "label": "urban"},
    ]
