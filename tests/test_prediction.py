import numpy as np
import pandas as pd
import pytest
import rasterio
import xarray as xr

from landcover_tree.constants import CLASS_NODATA
from landcover_tree.exceptions import BandMismatchError
from landcover_tree.imagery_processing import extract_band_values, stack_bands
from landcover_tree.models import (
    DecisionTree,
    evaluate,
    flatten_tree,
    legend_path_for,
    load_model,
    predict,
    predict_proba,
    route_pixels,
    save_model,
    tile_ranges,
    write_classification,
)
from landcover_tree.models.tree import TreeConfig
from landcover_tree.training import TrainingSet, build_training_set


@pytest.fixture
def model(example_records):
    return DecisionTree.fit(TrainingSet.from_records(example_records), TreeConfig(max_depth=1))


@pytest.fixture
def scene():
    rng = np.random.default_rng(42)
    return stack_bands({
        "red": rng.uniform(0, 100, size=(37, 23)),
        "green": rng.uniform(0, 40, size=(37, 23)),
    })


@pytest.fixture
def deep_model():
    rng = np.random.default_rng(0)
    features = rng.uniform(0, 100, size=(300, 2))
    labels = (features[:, 0] > 40).astype(int) + (features[:, 1] > 20).astype(int)
    ts = TrainingSet(features=features, labels=labels, band_names=("red", "green"), classes=("a", "b", "c"))
    return DecisionTree.fit(ts)


# ----------------------------------------------------------
# Model
# ----------------------------------------------------------

def test_legend_follows_alphabet(model):
    assert model.legend == {1: "urban", 2: "water"}
    assert model.class_code("water") == 2


def test_predict_vector(model):
    assert model.predict_vector({"red": 11, "green": 20}) == "water"
    assert model.predict_vector({"red": 90, "green": 20}) == "urban"


def test_evaluate_on_training_set(example_records, model):
    scores = evaluate(model, TrainingSet.from_records(example_records))
    assert scores["overall_accuracy"] == 1.0
    assert scores["kappa"] == pytest.approx(1.0)
    np.testing.assert_array_equal(scores["confusion_matrix"], [[2, 0], [0, 2]])


def test_save_and_load_model(tmp_path, deep_model):
    path = save_model(deep_model, tmp_path / "models" / "tree.yaml")
    assert path.exists()
    assert load_model(path) == deep_model


# ----------------------------------------------------------
# Raster prediction
# ----------------------------------------------------------

def test_predict_two_by_two_example(model):
    grid = stack_bands({
        "red": np.array([[11.0, 90.0], [90.0, 90.0]]),
        "green": np.full((2, 2), 20.0),
    })
    out = predict(grid, model)
    water, urban = model.class_code("water"), model.class_code("urban")
    np.testing.assert_array_equal(out.values, [[water, urban], [urban, urban]])
    assert out.dtype == np.uint16
    assert out.attrs["legend"] == model.legend
    assert out.attrs["nodata"] == CLASS_NODATA


def test_predict_without_missing_values_has_no_missing_output(deep_model, scene):
    out = predict(scene, deep_model, tile_rows=5)
    assert not (out.values == CLASS_NODATA).any()


def test_predict_with_missing_band_everywhere(deep_model, scene):
    scene.loc[{"band": "green"}] = np.nan
    out = predict(scene, deep_model)
    assert (out.values == CLASS_NODATA).all()


def test_missing_value_only_affects_its_pixel(deep_model, scene):
    scene[0, 3, 4] = np.nan  # red
    out = predict(scene, deep_model)
    assert out.values[3, 4] == CLASS_NODATA
    assert (out.values != CLASS_NODATA).sum() == out.size - 1


def test_predict_matches_per_pixel_walk(deep_model, scene):
    out = predict(scene, deep_model, tile_rows=4)
    for y in range(0, scene.sizes["y"], 5):
        for x in range(0, scene.sizes["x"], 3):
            vector = {b: float(scene.sel(band=b).values[y, x]) for b in deep_model.band_names}
            assert out.values[y, x] == deep_model.class_code(deep_model.predict_vector(vector))


@pytest.mark.parametrize("tile_rows,max_workers", [(1, 1), (7, 2), (10, 4), (100, None)])
def test_predict_does_not_depend_on_tiling(deep_model, scene, tile_rows, max_workers):
    reference = predict(scene, deep_model, tile_rows=37, max_workers=1)
    out = predict(scene, deep_model, tile_rows=tile_rows, max_workers=max_workers)
    np.testing.assert_array_equal(out.values, reference.values)


def test_predict_on_dask_grid(deep_model, scene):
    out = predict(scene.chunk({"y": 8, "x": 8}), deep_model, tile_rows=8, max_workers=2)
    np.testing.assert_array_equal(out.values, predict(scene, deep_model).values)


def test_predict_ignores_extra_bands_and_band_order(deep_model, scene):
    shuffled = stack_bands({
        "nir": np.zeros((37, 23)),
        "green": scene.sel(band="green").values,
        "red": scene.sel(band="red").values,
    })
    np.testing.assert_array_equal(predict(shuffled, deep_model).values, predict(scene, deep_model).values)


def test_predict_band_mismatch(deep_model):
    grid = stack_bands({"red": np.ones((2, 2)), "nir": np.ones((2, 2))})
    with pytest.raises(BandMismatchError) as excinfo:
        predict(grid, deep_model)
    assert excinfo.value.missing_bands == ["green"]


def test_predict_on_grid_with_numeric_band_coordinates():
    # rioxarray labels the bands of a multi-band file 1, 2, ...
    grid = xr.DataArray(
        np.array([[[10.0, 80.0], [12.0, 75.0]], [[20.0, 15.0], [22.0, 18.0]]]),
        dims=("band", "y", "x"),
        coords={"band": [1, 2], "y": [1.5, 0.5], "x": [0.5, 1.5]}
    )
    points = pd.DataFrame({"id": [1, 2, 3, 4], "x": [0.5, 1.5, 0.5, 1.5], "y": [1.5, 1.5, 0.5, 0.5]})
    labels = pd.Series({1: "water", 2: "urban", 3: "water", 4: "urban"})
    model = DecisionTree.fit(build_training_set(extract_band_values(grid, points), labels))
    assert model.band_names == ("1", "2")
    out = predict(grid, model)
    np.testing.assert_array_equal(out.values, [[2, 1], [2, 1]])


def test_predict_keeps_grid_coordinates(model):
    grid = xr.DataArray(
        np.full((2, 1, 2), 20.0),
        dims=("band", "y", "x"),
        coords={"band": ["red", "green"], "y": [5.5], "x": [0.5, 1.5]}
    )
    out = predict(grid, model)
    assert out.dims == ("y", "x")
    np.testing.assert_array_equal(out.x.values, [0.5, 1.5])
    assert "band" not in out.coords


def test_predict_does_not_modify_model(deep_model, scene):
    before = deep_model.to_dict()
    predict(scene, deep_model, max_workers=4)
    assert deep_model.to_dict() == before


def test_predict_proba(deep_model, scene):
    scene[0, 0, 0] = np.nan  # red
    proba = predict_proba(scene, deep_model, tile_rows=6)
    assert proba.dims == ("class", "y", "x")
    assert list(proba["class"].values) == ["a", "b", "c"]
    assert np.isnan(proba.values[:, 0, 0]).all()
    sums = proba.values.sum(axis=0)[1:]
    np.testing.assert_allclose(sums, 1.0, rtol=1e-5)
    # The most probable class is the predicted one
    codes = predict(scene, deep_model).values
    np.testing.assert_array_equal(np.argmax(proba.values[:, 1:, :], axis=0) + 1, codes[1:, :])


# ----------------------------------------------------------
# Tiling helpers
# ----------------------------------------------------------

def test_tile_ranges_cover_rows_without_overlap():
    assert tile_ranges(10, 4) == [(0, 4), (4, 8), (8, 10)]
    assert tile_ranges(3, 5) == [(0, 3)]


def test_tile_ranges_invalid():
    with pytest.raises(ValueError):
        tile_ranges(10, 0)


def test_route_pixels_on_single_leaf_tree():
    ts = TrainingSet.from_records([{"red": 1, "label": "x"}, {"red": 2, "label": "x"}])
    flat = flatten_tree(DecisionTree.fit(ts))
    np.testing.assert_array_equal(route_pixels(np.array([[0.0], [5.0]]), flat), [0, 0])
    assert flat.leaf_code[0] == 1


# ----------------------------------------------------------
# Export
# ----------------------------------------------------------

def test_write_classification(tmp_path, model):
    grid = stack_bands({
        "red": np.array([[11.0, 90.0, np.nan], [90.0, 10.0, 50.0]]),
        "green": np.full((2, 3), 20.0),
    })
    classified = predict(grid, model)
    transform = rasterio.transform.from_origin(500000, 4000000, 30, 30)
    path = write_classification(classified, tmp_path / "out" / "classes.tif", crs="EPSG:32633", transform=transform, block_rows=1)

    with rasterio.open(path) as src:
        np.testing.assert_array_equal(src.read(1), classified.values)
        assert src.nodata == CLASS_NODATA
        assert src.crs.to_epsg() == 32633
        assert src.tags(1)["class_2"] == "water"

    legend = pd.read_csv(legend_path_for(path))
    assert legend_path_for(path).name == "classes_legend.csv"
    assert legend.to_dict("list") == {"code": [1, 2], "label": ["urban", "water"]}
