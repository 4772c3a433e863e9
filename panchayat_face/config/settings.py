import os
from panchayat_face.config.paths import MODELS_DIR

FACE_MODEL_NAME = "buffalo_l"
CTX_ID = -1  # CPU
FACE_LANDMARKER_MODEL = MODELS_DIR / "face_landmarker.task"  # only used by the MediaPipe tasks API

# Landmark stream
MIN_LANDMARKS = 468  # FaceMesh point count
LEFT_EYE_INDICES = (33, 160, 158, 133, 153, 144)  # outer, top1, top2, inner, bottom2, bottom1
RIGHT_EYE_INDICES = (362, 385, 387, 263, 373, 380)

# Blink (EAR)
EAR_BASELINE_FACTOR = 1.2  # baseline = first EAR * factor
EAR_CLOSED_RATIO = 0.5  # closed when EAR < baseline * ratio
BLINK_MIN_DURATION = 0.05  # seconds
BLINK_MAX_DURATION = 0.15  # seconds
BLINKS_REQUIRED = 4

# Macro movement
MOVEMENT_REFERENCE_POINTS = (1, 33, 263, 61, 291)  # nose tip, eye corners, mouth corners
MOVEMENT_NOISE_FLOOR = 0.001  # normalized coordinates
MOVEMENT_MIN_VALID_POINTS = 3
MOVEMENT_THRESHOLD = 0.0025
MOVEMENT_HISTORY_SIZE = 10
MOVEMENT_HISTORY_REQUIRED = 5
MOVEMENTS_REQUIRED = 5

# Strict movement profile (wider window, more points)
STRICT_MOVEMENT_REFERENCE_POINTS = (1, 33, 133, 263, 362, 61, 291, 199)
STRICT_MOVEMENT_NOISE_FLOOR = 0.0008
STRICT_MOVEMENT_MIN_VALID_POINTS = 5
STRICT_MOVEMENT_THRESHOLD = 0.0035
STRICT_MOVEMENT_HISTORY_SIZE = 15
STRICT_MOVEMENT_HISTORY_REQUIRED = 8

LIVELINESS_PROFILE = os.getenv("PANCHAYAT_FACE_LIVELINESS_PROFILE", "default")  # "default" or "strict"

# Matching
MATCH_THRESHOLD = float(os.getenv("PANCHAYAT_FACE_MATCH_THRESHOLD", "0.38"))  # Euclidean distance
MATCH_POLICY = os.getenv("PANCHAYAT_FACE_MATCH_POLICY", "first")  # "first" or "nearest"

# Capture
CAMERA_INDEX = int(os.getenv("PANCHAYAT_FACE_CAMERA_INDEX", "0"))
FRAME_WIDTH = 640
FRAME_HEIGHT = 480
FRAME_POLL_INTERVAL = 0.1  # seconds between pulled frames
FACE_IMAGE_QUALITY = 80  # JPEG quality for submitted face images

# Submission
API_URL = os.getenv("PANCHAYAT_FACE_API_URL", "")  # empty = use local services
SUBMIT_TIMEOUT = float(os.getenv("PANCHAYAT_FACE_SUBMIT_TIMEOUT", "15"))  # seconds
VERIFICATION_METHOD = "FACE_RECOGNITION"

LOG_LEVEL = os.getenv("PANCHAYAT_FACE_LOG_LEVEL", "INFO").upper()
