"""
Redis persistence for calibrations, learning data and calibration sessions
"""
import logging
from typing import Optional

import redis

from .config import settings as default_settings, Settings
from .calibration import AdaptiveLearningData, CalibrationSession, SwingCalibration
from .models import StoreKey

logger = logging.getLogger(__name__)

CALIBRATION_TYPE = "swing_calibration"
LEARNING_TYPE = "learning_data"
SESSION_TYPE = "calibration_session"


class CalibrationStore:
    """Stores per-user calibration state as JSON strings in Redis"""

    def __init__(self, config: Optional[Settings] = None, client: Optional[redis.Redis] = None):
        """Initialize Redis connection

        Args:
            config: Connection settings (defaults to the global settings)
            client: Pre-built client, used instead of opening a new connection
        """
        config = config or default_settings
        self.redis_client = client or redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            decode_responses=True
        )

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except Exception as e:
            logger.error("Redis ping failed: %s", e)
            return False

    def save_calibration(self, calibration: SwingCalibration) -> bool:
        """Store a user's calibration

        Returns:
            True if stored successfully, False otherwise
        """
        try:
            key = StoreKey(data_type=CALIBRATION_TYPE, user_id=calibration.user_id)
            self.redis_client.set(key.to_key(), calibration.model_dump_json())
            return True
        except Exception as e:
            logger.error("Error storing calibration for %s: %s", calibration.user_id, e)
            return False

    def load_calibration(self, user_id: str) -> Optional[SwingCalibration]:
        try:
            key = StoreKey(data_type=CALIBRATION_TYPE, user_id=user_id)
            data = self.redis_client.get(key.to_key())
            if data:
                return SwingCalibration.model_validate_json(data)
            return None
        except Exception as e:
            logger.error("Error loading calibration for %s: %s", user_id, e)
            return None

    def save_learning_data(self, data: AdaptiveLearningData) -> bool:
        try:
            key = StoreKey(data_type=LEARNING_TYPE, user_id=data.user_id)
            self.redis_client.set(key.to_key(), data.model_dump_json())
            return True
        except Exception as e:
            logger.error("Error storing learning data for %s: %s", data.user_id, e)
            return False

    def load_learning_data(self, user_id: str) -> Optional[AdaptiveLearningData]:
        try:
            key = StoreKey(data_type=LEARNING_TYPE, user_id=user_id)
            data = self.redis_client.get(key.to_key())
            if data:
                return AdaptiveLearningData.model_validate_json(data)
            return None
        except Exception as e:
            logger.error("Error loading learning data for %s: %s", user_id, e)
            return None

    def save_session(self, session: CalibrationSession) -> bool:
        """Store a calibration session under the user and session id"""
        try:
            key = StoreKey(data_type=SESSION_TYPE, user_id=session.user_id, session_id=session.session_id)
            self.redis_client.set(key.to_key(), session.model_dump_json())
            return True
        except Exception as e:
            logger.error("Error storing calibration session %s: %s", session.session_id, e)
            return False

    def load_session(self, user_id: str, session_id: str) -> Optional[CalibrationSession]:
        try:
            key = StoreKey(data_type=SESSION_TYPE, user_id=user_id, session_id=session_id)
            data = self.redis_client.get(key.to_key())
            if data:
                return CalibrationSession.model_validate_json(data)
            return None
        except Exception as e:
            logger.error("Error loading calibration session %s: %s", session_id, e)
            return None

    def delete_user(self, user_id: str) -> bool:
        """Remove a user's calibration and learning data"""
        try:
            self.redis_client.delete(
                StoreKey(data_type=CALIBRATION_TYPE, user_id=user_id).to_key(),
                StoreKey(data_type=LEARNING_TYPE, user_id=user_id).to_key()
            )
            return True
        except Exception as e:
            logger.error("Error deleting calibration data for %s: %s", user_id, e)
            return False
