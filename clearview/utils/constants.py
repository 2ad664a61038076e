"""
Global constants for the Clearview pipeline.
"""
from pathlib import Path

# Project Structure
BASE_DIR = Path(__file__).parent.parent
CONFIGS_DIR = BASE_DIR / "configs"

# Capture
DEFAULT_FALLBACK_FPS = 30.0

# Dehaze (dark channel prior)
DEFAULT_DARK_WINDOW = 15
DEFAULT_OMEGA = 0.95
DEFAULT_T0 = 0.1
DEFAULT_GUIDED_RADIUS = 60
DEFAULT_GUIDED_EPS = 1e-4
ATMOSPHERIC_FRACTION = 1000  # brightest 1/1000 of the dark channel

# Detection
DEFAULT_CONFIDENCE_THRESHOLD = 0.3
DEFAULT_INPUT_SIZE = 416
DEFAULT_NMS_IOU = 0.45
ROW_BOX_COLUMNS = 4
ROW_OBJECTNESS_INDEX = 4
ROW_CLASS_OFFSET = 5

# Model directory layout
DEFAULT_CFG_FILE = "yolov3.cfg"
DEFAULT_WEIGHTS_FILE = "yolov3.weights"
DEFAULT_CLASSES_FILE = "coco_classes.txt"
DEFAULT_COLORS_FILE = "coco_colors.txt"
PLACEHOLDER_COLOR = (128, 128, 128)  # RGB for unusable color lines

# Pipeline
DEFAULT_QUEUE_SIZE = 4
DEFAULT_OVERFLOW_POLICY = "drop_oldest"
STAGE_JOIN_TIMEOUT = 5.0

# Display Settings
DEFAULT_WINDOW_WIDTH = 1280
DEFAULT_WINDOW_HEIGHT = 480
VIEWER_QUEUE_SIZE = 2
