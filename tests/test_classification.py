import numpy as np
import pandas as pd
import pytest
import rasterio

from landcover_tree.classification import get_band_paths, load_samples, run_classification
from landcover_tree.exceptions import JoinKeyMismatchError
from landcover_tree.models import legend_path_for, load_model
from conftest import write_band


@pytest.fixture
def scene_cfg(tmp_path):
    """A 4x4 scene: water on the two left columns, vegetation on the right."""
    image_dir = tmp_path / "images"
    image_dir.mkdir()
    red = np.array([[8000, 8000, 9000, 9000]] * 4, dtype=np.uint16)
    nir = np.array([[8000, 8000, 30000, 30000]] * 4, dtype=np.uint16)
    red[3, 3] = 0  # no-data
    write_band(image_dir / "red.tif", red)
    write_band(image_dir / "nir.tif", nir)

    # Pixel centres are at x = 100.5 .. 103.5 and y = 103.5 .. 100.5
    pd.DataFrame({
        "id": [1, 2, 3, 4],
        "x": [100.5, 101.5, 102.5, 103.5],
        "y": [103.5, 101.5, 103.5, 101.5],
    }).to_csv(tmp_path / "points.csv", index=False)
    pd.DataFrame({
        "id": [1, 2, 3, 4],
        "class": ["water", "water", "vegetation", "vegetation"],
    }).to_csv(tmp_path / "labels.csv", index=False)

    return {
        "paths": {
            "input_image_dir": str(image_dir),
            "band_file_pattern": "{band}.tif",
            "samples_csv": str(tmp_path / "points.csv"),
            "labels_csv": str(tmp_path / "labels.csv"),
            "output_dir": str(tmp_path / "output"),
        },
        "bands": ["red", "nir"],
        "samples": {"id_column": "id", "x_column": "x", "y_column": "y", "label_column": "class"},
        "normalization": {"lo": 7273, "hi": 43636, "scale": 0.0000275, "offset": -0.2, "nodata": 0},
        "trainer": {"max_depth": None, "min_samples_split": 2, "impurity": "gini", "max_workers": 2},
        "prediction": {"tile_rows": 2, "max_workers": 2},
        "tiling": {"chunk_size": 2},
    }


def test_get_band_paths(scene_cfg):
    paths = get_band_paths(scene_cfg)
    assert list(paths) == ["red", "nir"]
    assert paths["nir"].name == "nir.tif"


def test_load_samples_from_points_table(scene_cfg, tmp_path):
    points = pd.read_csv(scene_cfg["paths"]["samples_csv"])
    points["class"] = ["a", "b", "a", "b"]
    points.to_csv(tmp_path / "points_with_labels.csv", index=False)
    scene_cfg["paths"]["samples_csv"] = str(tmp_path / "points_with_labels.csv")
    scene_cfg["paths"]["labels_csv"] = None
    _, labels = load_samples(scene_cfg)
    assert labels.to_dict() == {1: "a", 2: "b", 3: "a", 4: "b"}


def test_run_classification(scene_cfg):
    output_path = run_classification(scene_cfg)

    with rasterio.open(output_path) as src:
        classes = src.read(1)
        assert src.crs.to_epsg() == 32633
        assert src.transform == rasterio.transform.from_origin(100, 104, 1, 1)

    # vegetation -> 1, water -> 2, 0 for the no-data pixel
    expected = np.array([[2, 2, 1, 1]] * 4)
    expected[3, 3] = 0
    np.testing.assert_array_equal(classes, expected)

    legend = pd.read_csv(legend_path_for(output_path))
    assert legend["label"].tolist() == ["vegetation", "water"]

    model = load_model(output_path.parent / "decision_tree.yaml")
    assert model.classes == ("vegetation", "water")
    assert model.band_names == ("red", "nir")


def test_run_classification_unlabeled_sample(scene_cfg, tmp_path):
    pd.DataFrame({"id": [1, 2, 3], "class": ["water", "water", "vegetation"]}).to_csv(
        tmp_path / "labels.csv", index=False
    )
    with pytest.raises(JoinKeyMismatchError):
        run_classification(scene_cfg)
