"""
Run Land-Cover Classification
=============================

Entry-point script to execute the full decision tree classification pipeline.

Usage
-----
From the repository root:

    python scripts/run_classification.py [config.yaml] [--verbose]

This will:
1. Load the configuration file from `configs/` (default.yaml unless given).
2. Load the band rasters and rescale them to percent reflectance.
3. Train a decision tree on the labeled sample points.
4. Classify every pixel and save the GeoTIFF, its legend and the model.
"""

import logging
import sys
from pathlib import Path

# Ensure repository root is in the Python path
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from landcover_tree.classification import run_classification
from landcover_tree.utils.config import get_config

if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    logging.basicConfig(
        level=logging.DEBUG if "--verbose" in sys.argv else logging.INFO,
        format="[%(asctime)s] %(levelname)-8s %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        output_path = run_classification(get_config(args[0] if args else "default.yaml"))
        print(f"✅ Classification completed successfully.\nOutput saved to: {output_path}")
    except Exception as e:
        print(f"❌ Classification failed: {e}")
        raise
