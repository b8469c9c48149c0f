"""
Tests for swing_engine.calibration_store module
"""
import json
from unittest.mock import patch

import pytest

from swing_engine.calibration import (
    AdaptiveLearningData, CalibrationSession, DeviceInfo, PersonalizedThresholds, SwingCalibration
)
from swing_engine.calibration_store import CalibrationStore
from swing_engine.models import MetricRange


@pytest.fixture
def sample_calibration():
    return SwingCalibration(
        user_id="test_user",
        baseline_noise=0.6,
        swing_threshold=7.5,
        handedness="right",
        club_type="driver",
        personalized_thresholds=PersonalizedThresholds(
            speed_range=MetricRange(min=8.0, max=18.0),
            backswing_angle_range=MetricRange(min=70.0, max=100.0),
            tempo_range=MetricRange(min=2.4, max=3.6),
            impact_timing_range=MetricRange(min=900.0, max=1300.0),
        ),
    )


class TestCalibrationStore:
    """Test CalibrationStore class"""

    def test_store_initialization(self, test_settings):
        """Test the Redis client is built from settings"""
        with patch("swing_engine.calibration_store.redis.Redis") as mock_redis:
            CalibrationStore(test_settings)

        mock_redis.assert_called_once_with(
            host=test_settings.redis_host,
            port=test_settings.redis_port,
            db=test_settings.redis_db,
            password=test_settings.redis_password,
            decode_responses=True
        )

    def test_save_calibration_success(self, store_with_mock, sample_calibration):
        """Test successful calibration storage"""
        result = store_with_mock.save_calibration(sample_calibration)

        assert result is True
        store_with_mock.redis_client.set.assert_called_once()
        key, value = store_with_mock.redis_client.set.call_args[0]
        assert key == "swing_calibration:test_user"
        assert json.loads(value)["swing_threshold"] == 7.5

    def test_save_calibration_failure(self, store_with_mock, sample_calibration):
        """Test calibration storage failure"""
        store_with_mock.redis_client.set.side_effect = Exception("Redis error")

        assert store_with_mock.save_calibration(sample_calibration) is False

    def test_load_calibration_missing(self, store_with_mock):
        """Test loading a calibration that does not exist"""
        assert store_with_mock.load_calibration("test_user") is None
        store_with_mock.redis_client.get.assert_called_once_with("swing_calibration:test_user")

    def test_load_calibration_failure(self, store_with_mock):
        """Test loading when Redis fails"""
        store_with_mock.redis_client.get.side_effect = Exception("Redis error")

        assert store_with_mock.load_calibration("test_user") is None

    def test_load_calibration_corrupt(self, store_with_mock):
        """Test that unparseable stored data is treated as missing"""
        store_with_mock.redis_client.get.return_value = "{not json"

        assert store_with_mock.load_calibration("test_user") is None

    def test_save_learning_data(self, store_with_mock):
        """Test learning data storage key"""
        result = store_with_mock.save_learning_data(AdaptiveLearningData(user_id="test_user"))

        assert result is True
        assert store_with_mock.redis_client.set.call_args[0][0] == "learning_data:test_user"

    def test_save_session_key(self, store_with_mock):
        """Test session storage key includes the session id"""
        session = CalibrationSession(user_id="test_user", device=DeviceInfo(device_type="handheld"))

        assert store_with_mock.save_session(session) is True
        assert store_with_mock.redis_client.set.call_args[0][0] == \
            f"calibration_session:test_user:{session.session_id}"

    def test_delete_user(self, store_with_mock):
        """Test deleting both per-user records"""
        assert store_with_mock.delete_user("test_user") is True
        store_with_mock.redis_client.delete.assert_called_once_with(
            "swing_calibration:test_user", "learning_data:test_user")

    def test_delete_user_failure(self, store_with_mock):
        """Test delete failure"""
        store_with_mock.redis_client.delete.side_effect = Exception("Redis error")

        assert store_with_mock.delete_user("test_user") is False

    def test_ping(self, store_with_mock):
        """Test connectivity check"""
        assert store_with_mock.ping() is True

        store_with_mock.redis_client.ping.side_effect = Exception("Connection refused")
        assert store_with_mock.ping() is False


class TestCalibrationPersistence:
    """Test data survives a store restart"""

    def test_calibration_persistence(self, store_with_persistence, sample_calibration, test_settings):
        """Test that a calibration persists after restart"""
        assert store_with_persistence.save_calibration(sample_calibration) is True

        # Simulate restart by creating a new store with the same client
        new_store = CalibrationStore(test_settings, client=store_with_persistence.redis_client)
        retrieved = new_store.load_calibration("test_user")

        assert retrieved == sample_calibration
        assert retrieved.personalized_thresholds.tempo_range.max == 3.6

    def test_learning_data_persistence(self, store_with_persistence):
        """Test learning data round trip"""
        data = AdaptiveLearningData(user_id="test_user", total_swings=12, confirmed_swings=9,
                                    false_positives=3, accuracy=0.75, learning_rate=0.08)

        store_with_persistence.save_learning_data(data)
        retrieved = store_with_persistence.load_learning_data("test_user")

        assert retrieved == data

    def test_session_persistence(self, store_with_persistence):
        """Test session round trip"""
        session = CalibrationSession(user_id="test_user", device=DeviceInfo(device_type="wearable"))

        store_with_persistence.save_session(session)
        retrieved = store_with_persistence.load_session("test_user", session.session_id)

        assert retrieved == session
        assert store_with_persistence.load_session("test_user", "other") is None

    def test_delete_user_removes_records(self, store_with_persistence, sample_calibration):
        """Test delete removes calibration and learning data"""
        store_with_persistence.save_calibration(sample_calibration)
        store_with_persistence.save_learning_data(AdaptiveLearningData(user_id="test_user"))

        store_with_persistence.delete_user("test_user")

        assert store_with_persistence.load_calibration("test_user") is None
        assert store_with_persistence.load_learning_data("test_user") is None
        assert store_with_persistence.redis_client.keys("*test_user*") == []
