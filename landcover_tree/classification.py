"""
End-to-end land-cover classification driven by the YAML configuration.

raw bands -> reflectance -> sample extraction -> training set -> tree
-> classified grid -> GeoTIFF + legend + model file
"""

import logging
from pathlib import Path
from typing import Tuple

import pandas as pd

from landcover_tree.imagery_processing import (
    extract_band_values,
    get_band_path,
    load_band_stack,
    normalize_reflectance,
)
from landcover_tree.models import (
    DecisionTree,
    evaluate,
    predict,
    save_model,
    write_classification,
)
from landcover_tree.training import build_training_set
from landcover_tree.utils.config import *

logger = logging.getLogger(__name__)


def get_band_paths(cfg) -> dict:
    """Band name to raster file, in the configured band order."""
    try:
        bands = cfg['bands']
    except KeyError:
        raise KeyError("bands missing in the configuration file.")
    return {band: get_band_path(band, cfg) for band in bands}


def load_samples(cfg) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Read the sample points and their labels.

    The points CSV holds the id and coordinate columns. Labels come from the
    labels CSV when configured, otherwise from the label column of the points CSV.

    Returns
    -------
    tuple
        Points DataFrame and label Series indexed by sample id.
    """
    paths = cfg['paths']
    columns = cfg.get('samples', {})
    id_col = columns.get('id_column', 'id')
    label_col = columns.get('label_column', 'class')

    points = pd.read_csv(paths['samples_csv'])
    labels_csv = paths.get('labels_csv')
    label_table = pd.read_csv(labels_csv) if labels_csv else points
    labels = label_table.set_index(id_col)[label_col]
    logger.info("Read %d sample point(s) and %d label(s)", len(points), len(labels))
    return points, labels


def run_classification(cfg=None) -> Path:
    """
    Train a decision tree on the configured samples and classify the whole scene.

    Parameters
    ----------
    cfg : dict, optional
        Configuration dictionary. Defaults to `configs/default.yaml`.

    Returns
    -------
    Path
        Path of the classification GeoTIFF.
    """
    if cfg is None:
        cfg = get_config("default.yaml")
    columns = cfg.get('samples', {})

    # Bands and reflectance
    raw = load_band_stack(get_band_paths(cfg), chunks=get_chunk_size(cfg))
    grid = normalize_reflectance(raw, **get_normalization_params(cfg))

    # Training set
    points, labels = load_samples(cfg)
    features = extract_band_values(
        grid, points,
        x_col=columns.get('x_column', 'x'),
        y_col=columns.get('y_column', 'y'),
        id_col=columns.get('id_column', 'id')
    )
    training_set = build_training_set(features, labels, band_names=cfg['bands'])

    # Tree
    model = DecisionTree.fit(
        training_set,
        get_tree_config(cfg),
        max_workers=(cfg.get('trainer') or {}).get('max_workers') or 1
    )
    logger.info("Decision tree:\n%s", model.describe())
    scores = evaluate(model, training_set)
    logger.info("Training accuracy %.3f, kappa %.3f", scores['overall_accuracy'], scores['kappa'])

    # Prediction
    classified = predict(grid, model, show_progress=True, **get_prediction_params(cfg))
    output_dir = Path(cfg['paths']['output_dir'])
    output_path = write_classification(
        classified,
        output_dir / 'landcover_classification.tif',
        crs=raw.rio.crs,
        transform=raw.rio.transform()
    )
    save_model(model, output_dir / 'decision_tree.yaml')
    return output_path
