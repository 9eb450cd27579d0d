"""
Default parameters for the imcview core.

Classes take keyword overrides that default to the values below.
"""

import numpy as np

# Default channel colors optimized for IMC overlays on black background
# Inspired by DAPI, FITC, TRITC, Cy5 conventions + high contrast colors
CHANNEL_COLORS = [
    np.array([255, 0, 0]),  # Red
    np.array([0, 255, 0]),  # Green
    np.array([0, 0, 255]),  # Blue
    np.array([255, 0, 255]),  # Magenta
    np.array([0, 255, 255]),  # Cyan
    np.array([255, 255, 0]),  # Yellow
]

# Histogram used for the automatic display window
HISTOGRAM_BINS = 100
AUTO_THRESHOLD_FRACTION = 0.995

# Smallest reflectance used by pigment mixing (K/S is infinite at 0)
REFLECTANCE_FLOOR = 1e-6

# Pencil radius in acquisition pixels
DEFAULT_BRUSH_RADIUS = 2.0

# Fixed precision grid for all polygon overlays (acquisition pixels)
GEOMETRY_GRID_SIZE = 1e-6

# Cell size of the annotation picking index (acquisition pixels)
INDEX_CELL_SIZE = 64.0

# Classifier
CLASSIFIER_RANDOM_STATE = 0
MODEL_FORMAT_VERSION = 1

# Alpha of classification overlays (0-255)
OVERLAY_ALPHA = 200

# Worker threads for background render/classify tasks
TASK_WORKERS = 2
