"""
Constants used across the land-cover classification pipeline.

This module defines no-data values, the Landsat reflectance rescaling defaults
and the decision tree defaults. All constants are grouped logically with
explanations for clarity.

Example
-------
from landcover_tree.constants import LANDSAT_REFLECTANCE

print(LANDSAT_REFLECTANCE['scale'])  # 2.75e-05
"""

# ---------------------------
# No-data values
# ---------------------------
# Default values representing missing or invalid data for each data source.
NODATAVALS = {
    'Landsat_bands': 0,   # Raw Landsat digital numbers (collection-2 fill value)
    'classes': 0          # Classification output grid
}

# Class code written for pixels that could not be classified
CLASS_NODATA = NODATAVALS['classes']

# ---------------------------
# Landsat collection-2 surface reflectance
# ---------------------------
# Valid digital number range and the scale/offset bringing it to reflectance.
# (v * scale + offset) * 100 gives percent reflectance in [0, 100].
LANDSAT_REFLECTANCE = {
    'lo': 7273,
    'hi': 43636,
    'scale': 0.0000275,
    'offset': -0.2
}

# ---------------------------
# Decision tree defaults
# ---------------------------
IMPURITY_MEASURES = ('gini', 'entropy')
# A split must lower the weighted impurity by more than this to be kept
MIN_IMPURITY_DECREASE = 1e-12
