"""
Global configuration constants for the swing engine
This file contains all configurable constants that can be changed in one place
"""

# =============================================================================
# MOTION INGEST
# =============================================================================

# Nominal sensor sample rate (Hz) - used for rate-based metrics
SAMPLE_RATE_HZ = 50

# Buffer Configuration
MOTION_BUFFER_SIZE = 1000        # ~20s at 50Hz
MOTION_BUFFER_TRIM_SIZE = 500    # Samples kept when the buffer overflows

# Gyroscope contribution to the combined motion signal (deg/s -> m/s² scale)
GYRO_SIGNAL_WEIGHT = 0.01
SMOOTHING_WINDOW_SAMPLES = 3

# =============================================================================
# PHASE SEGMENTATION
# =============================================================================

# Fallbacks used until a user calibration is loaded
DEFAULT_BASELINE_NOISE = 0.5     # m/s²
DEFAULT_SWING_THRESHOLD = 3.0    # m/s²
DEFAULT_EXPECTED_TEMPO = 3.0     # backswing:downswing

# Transition rules (tunable, not physical constants)
STABILITY_WINDOW_MS = 200        # Quiet time needed to register address
TRANSITION_DROP_RATIO = 0.6      # Drop below this share of backswing peak -> transition
IMPACT_THRESHOLD = 12.0          # Single-sample spike for impact (m/s²)
IMPACT_MAX_DURATION_MS = 60      # Impact phase never lasts longer than this
FOLLOWTHROUGH_END_RATIO = 0.3    # Swing closes below this share of swing threshold
FOLLOWTHROUGH_MAX_MS = 1500      # Force close of follow-through
SWING_MAX_DURATION_MS = 2500     # Abandon a swing with no impact after this long

# Detection confidence
DOWNSWING_SIGNATURE_THRESHOLD = 5.0
MIN_SWING_CONFIDENCE = 60

# =============================================================================
# VALIDATION
# =============================================================================

VALIDATION_HISTORY_SIZE = 50
VALIDATION_HISTORY_MIN_CONFIDENCE = 30
VALIDATION_CONSISTENCY_WINDOW = 5
VALID_CONFIDENCE_THRESHOLD = 60
VALID_RISK_THRESHOLD = 40
FALSE_POSITIVE_MATCH_THRESHOLD = 0.6

# =============================================================================
# CALIBRATION
# =============================================================================

MIN_CONFIRMED_CALIBRATION_SWINGS = 5
TARGET_CALIBRATION_SWINGS = 15
INITIAL_LEARNING_RATE = 0.1
MIN_LEARNING_RATE = 0.05
LEARNING_RATE_DECAY = 0.95
STABILITY_PERIOD_SWINGS = 20
INITIAL_CONFIDENCE_THRESHOLD = 75
MAX_CONFIDENCE_THRESHOLD = 95

# =============================================================================
# ERROR MONITORING
# =============================================================================

ERROR_HISTORY_SIZE = 100
ANALYSIS_HISTORY_SIZE = 1000     # Analysis timestamps kept for the hourly error rate
HIGH_SEVERITY_ERRORS_PER_HOUR = 5
ERROR_RATE_LIMIT = 0.2
MIN_MOTION_SAMPLES = 50
MAX_SENSOR_ACCELERATION = 50.0   # m/s², beyond this a reading is corrupted

# =============================================================================
# REDIS CONFIGURATION
# =============================================================================

# Redis Connection
REDIS_HOST = "localhost"
REDIS_PORT = 6379
REDIS_DB = 0
REDIS_PASSWORD = None

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

# Log Levels
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "swing_engine.log"

# =============================================================================
# TESTING CONFIGURATION
# =============================================================================

# Test Settings
TEST_REDIS_DB = 1                     # Redis DB for testing (separate from production)
TEST_SAMPLE_RATE_HZ = 50
