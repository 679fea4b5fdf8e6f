"""
Configuration utilities for the land-cover classification pipeline.

Provides:
- Config singleton class to load YAML once
- Convenience access function
- Helpers to extract the typed sections used by the pipeline
"""

from pathlib import Path
import yaml
from typing import Any, Dict

from landcover_tree.constants import NODATAVALS

class Config:
    """
    Singleton-like loader to read a YAML configuration file once.

    This class ensures that the configuration is loaded a single time per Python session
    and can be accessed across modules without repeatedly reading the YAML file.

    Usage
    -----
    cfg = Config.load("default.yaml")
    """

    _cfgs: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def load(cls, filename="default.yaml", force_reload=False):
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        filename : str, optional
            Name of the YAML configuration file located in the `configs/` directory.
            Defaults to "default.yaml".
        force_reload: bool, optional
            Only load once per session so this argument allows to force that and reload anyway.

        Returns
        -------
        dict
            The loaded configuration as a dictionary.

        Notes
        -----
        Each file is only loaded once. Subsequent calls with the same filename
        return the cached configuration.
        """
        if filename not in cls._cfgs or force_reload:
            config_path = get_config_dir_path() / filename
            with open(config_path) as f:
                cls._cfgs[filename] = yaml.safe_load(f)
        return cls._cfgs[filename]

def get_config_dir_path() -> Path:
    """Return the repository `configs/` directory."""
    return Path(__file__).resolve().parent.parent.parent / "configs"

def get_config(filename="default.yaml"):
    """
    Convenience function to access the global configuration.

    Parameters
    ----------
    filename : str, optional
        Name of the YAML configuration file. Defaults to "default.yaml".

    Returns
    -------
    dict
        Loaded configuration dictionary.
    """
    return Config.load(filename)

def get_chunk_size(cfg):
    """
    Retrieve the chunk size from the configuration dictionary.

    Parameters
    ----------
    cfg : dict
        Configuration dictionary (from `Config.load` or `get_config`).

    Returns
    -------
    int
        Chunk size specified in `cfg['tiling']['chunk_size']`.

    Raises
    ------
    KeyError
        If `chunk_size` is missing in the configuration.
    """
    try:
        return cfg['tiling']['chunk_size']
    except KeyError:
        raise KeyError("chunk_size missing in the configuration file.")

def get_normalization_params(cfg) -> Dict[str, float]:
    """
    Retrieve the reflectance normalization parameters.

    Returns
    -------
    dict
        Keys `lo`, `hi`, `scale`, `offset` and `nodata` (Landsat fill value unless configured).

    Raises
    ------
    KeyError
        If the `normalization` section or one of its required keys is missing.
    """
    try:
        section = cfg['normalization']
        params = {key: section[key] for key in ('lo', 'hi', 'scale', 'offset')}
    except KeyError as e:
        raise KeyError(f"normalization parameter {e} missing in the configuration file.")
    params['nodata'] = section.get('nodata', NODATAVALS['Landsat_bands'])
    return params

def get_tree_config(cfg):
    """
    Build the decision tree training configuration from the `trainer` section.

    Missing keys fall back to the `TreeConfig` defaults.
    """
    # Imported here so that loading the config never pulls the model stack
    from landcover_tree.models.tree import TreeConfig
    return TreeConfig.from_dict(cfg.get('trainer') or {})

def get_prediction_params(cfg) -> Dict[str, Any]:
    """
    Retrieve tiling parameters for the raster prediction.

    Returns
    -------
    dict
        `tile_rows` (rows per tile) and `max_workers` (thread count, None for the default).

    Raises
    ------
    KeyError
        If `tile_rows` is missing in the configuration.
    """
    try:
        section = cfg['prediction']
        return {'tile_rows': section['tile_rows'], 'max_workers': section.get('max_workers')}
    except KeyError:
        raise KeyError("prediction.tile_rows missing in the configuration file.")
