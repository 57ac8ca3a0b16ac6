"""Central configuration for wand calibration and tracking."""

# ---------------------------------------------------------------------------
# Camera / frame
# ---------------------------------------------------------------------------
WIDTH, HEIGHT = 640, 480
CAMERA_INDEX = 0
TARGET_FPS = 30
FRAME_INTERVAL_S = 1.0 / TARGET_FPS   # ~33ms between processed frames

# ---------------------------------------------------------------------------
# Hue domain (OpenCV 8-bit HSV: H 0-179, S/V 0-255)
# ---------------------------------------------------------------------------
HUE_RANGE = 180
CHANNEL_MAX = 255

# ---------------------------------------------------------------------------
# Ball registry
# ---------------------------------------------------------------------------
MAX_BALLS = 2
RECALIBRATE_HUE_DISTANCE = 8      # degrees; closer than this refreshes a ball

# Hue tolerance (slider-controlled half-width around the centre hue)
DEFAULT_HUE_TOLERANCE = 12
HUE_TOLERANCE_MIN = 4
HUE_TOLERANCE_MAX = 60
STORED_HUE_TOLERANCE_MAX = 40     # accepted range when loading from storage

# ---------------------------------------------------------------------------
# Auto-calibration ("hold the object over the lens")
# ---------------------------------------------------------------------------
PROBE_POSITIONS = [
    (0.2, 0.2), (0.5, 0.2), (0.8, 0.2),
    (0.2, 0.5), (0.5, 0.5), (0.8, 0.5),
    (0.2, 0.8), (0.5, 0.8), (0.8, 0.8),
]
PROBE_NEIGHBOR_RADIUS = 2         # 5x5 window per probe
CALIB_MIN_VALUE = 80              # any darker pixel rejects the frame
CALIB_HUE_UNIFORM_TOL = 12        # degrees from the frame mean hue
CALIB_SAT_UNIFORM_TOL = 35        # units from the frame mean saturation
CALIB_REQUIRED_FRAMES = 10        # unbroken run of uniform frames to commit

CALIB_HUE_MARGIN_MIN = 4          # floor for the spread-derived hue margin
CALIB_HUE_MARGIN_SPREAD = 0.35    # fraction of observed hue spread
CALIB_SAT_MARGIN = 15
CALIB_VAL_MARGIN = 15
CALIB_MIN_SPAN = 16               # narrower S/V spans are widened to this

# Fallback S/V bounds when the observed span is degenerate
DEFAULT_SAT_RANGE = (190, 255)
DEFAULT_VAL_RANGE = (210, 255)

# ---------------------------------------------------------------------------
# Blob detection
# ---------------------------------------------------------------------------
MORPH_KERNEL_SIZE = 5             # elliptical kernel for open / dilate
MASK_BLUR_KSIZE = 7
MIN_CONTOUR_AREA = 80             # px^2
MIN_CIRCULARITY = 0.5             # 4*pi*area / perimeter^2
FALLBACK_MIN_COVERAGE = 0.02      # mask fraction that triggers centred fallback

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
STORE_KEY_HUE_TOLERANCE = "wandtrack.hue_tolerance"
STORE_KEY_BALLS = "wandtrack.balls"

# ---------------------------------------------------------------------------
# Wand trails (points handed to the gesture layer)
# ---------------------------------------------------------------------------
TRAIL_MAX_AGE_S = 3.0
TRAIL_MIN_POINTS = 4              # shorter trails are never handed to the classifier
TRAIL_SETTLE_S = 0.2              # wand must pause this long before a trail is ready

# ---------------------------------------------------------------------------
# Diagnostics app
# ---------------------------------------------------------------------------
BALL_DRAW_COLORS = [
    (0, 140, 255),    # Orange (BGR) - wand 1
    (255, 0, 160),    # Purple (BGR) - wand 2
]
CALIBRATED_CHIME_FREQS = (523, 784)
CALIBRATED_CHIME_DURATION = 0.18
