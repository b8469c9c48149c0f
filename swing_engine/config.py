"""
Configuration settings for the swing engine
"""
import os
import sys
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

# Add project root to path to import global_config
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from global_config import *


class Settings(BaseSettings):
    """Engine settings with environment variable support"""
    
    # Redis Configuration
    redis_host: str = REDIS_HOST
    redis_port: int = REDIS_PORT
    redis_db: int = REDIS_DB
    redis_password: Optional[str] = REDIS_PASSWORD
    
    # Motion Ingest
    sample_rate_hz: int = SAMPLE_RATE_HZ
    buffer_size: int = MOTION_BUFFER_SIZE
    buffer_trim_size: int = MOTION_BUFFER_TRIM_SIZE
    gyro_signal_weight: float = GYRO_SIGNAL_WEIGHT
    smoothing_window: int = SMOOTHING_WINDOW_SAMPLES
    
    # Phase Segmentation
    default_baseline_noise: float = DEFAULT_BASELINE_NOISE
    default_swing_threshold: float = DEFAULT_SWING_THRESHOLD
    default_expected_tempo: float = DEFAULT_EXPECTED_TEMPO
    stability_window_ms: float = STABILITY_WINDOW_MS
    transition_drop_ratio: float = TRANSITION_DROP_RATIO
    impact_threshold: float = IMPACT_THRESHOLD
    impact_max_duration_ms: float = IMPACT_MAX_DURATION_MS
    followthrough_end_ratio: float = FOLLOWTHROUGH_END_RATIO
    followthrough_max_ms: float = FOLLOWTHROUGH_MAX_MS
    swing_max_duration_ms: float = SWING_MAX_DURATION_MS
    downswing_signature_threshold: float = DOWNSWING_SIGNATURE_THRESHOLD
    min_swing_confidence: float = MIN_SWING_CONFIDENCE
    
    # Validation
    validation_history_size: int = VALIDATION_HISTORY_SIZE
    
    # Calibration
    min_confirmed_swings: int = MIN_CONFIRMED_CALIBRATION_SWINGS
    target_calibration_swings: int = TARGET_CALIBRATION_SWINGS
    stability_period: int = STABILITY_PERIOD_SWINGS
    
    # Error Monitoring
    error_history_size: int = ERROR_HISTORY_SIZE
    analysis_history_size: int = ANALYSIS_HISTORY_SIZE
    min_motion_samples: int = MIN_MOTION_SAMPLES
    
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()
