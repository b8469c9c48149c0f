"""
Pytest configuration and fixtures for swing engine tests
"""
import fnmatch
import os
import sys
from unittest.mock import Mock

import pytest
import redis

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from global_config import *
from swing_engine.config import Settings
from swing_engine.calibration import CalibrationManager, DeviceInfo
from swing_engine.calibration_store import CalibrationStore
from swing_engine.engine import SwingEngine
from swing_engine.errors import ErrorMonitor
from swing_engine.events import EventBus
from swing_engine.models import MotionSample, PhaseName, SwingMetrics, SwingPhase
from swing_engine.validation import ValidationContext


class MockRedisClient:
    """Mock Redis client that maintains state to simulate persistence"""

    def __init__(self):
        self.data = {}  # Simulate Redis key-value store

    def set(self, key, value):
        """Mock Redis SET operation"""
        self.data[key] = value
        return True

    def get(self, key):
        """Mock Redis GET operation"""
        return self.data.get(key)

    def delete(self, *keys):
        """Mock Redis DELETE operation"""
        deleted_count = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                deleted_count += 1
        return deleted_count

    def ping(self):
        """Mock Redis PING operation"""
        return True

    def keys(self, pattern):
        """Mock Redis KEYS operation"""
        return fnmatch.filter(list(self.data.keys()), pattern)


def build_swing_stream(start: float = 0.0):
    """Full swing at 50Hz: address, backswing, transition, downswing, impact, follow-through"""
    segments = [
        (15, dict(az=0.1)),                   # address
        (20, dict(az=5.0, gy=100.0)),         # backswing
        (3, dict(az=1.0)),                    # transition
        (10, dict(az=8.0, gy=200.0)),         # downswing
        (2, dict(az=20.0)),                   # impact
        (10, dict(az=6.0, gy=150.0)),         # follow-through
        (3, dict(az=0.2)),                    # settle
    ]
    samples = []
    for count, values in segments:
        for _ in range(count):
            fields = dict(ax=0.0, ay=0.0, az=0.0, gx=0.0, gy=0.0, gz=0.0)
            fields.update(values)
            samples.append(MotionSample(timestamp=start + len(samples) * 20, **fields))
    return samples


@pytest.fixture
def test_settings():
    """Test settings configuration"""
    return Settings(
        redis_host=REDIS_HOST,
        redis_port=REDIS_PORT,
        redis_db=TEST_REDIS_DB,  # Use different DB for testing
        sample_rate_hz=TEST_SAMPLE_RATE_HZ
    )


@pytest.fixture
def mock_redis_client():
    """Mock Redis client for testing"""
    mock_client = Mock(spec=redis.Redis)
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.delete.return_value = 1
    mock_client.ping.return_value = True
    return mock_client


@pytest.fixture
def persistent_redis_client():
    """Mock Redis client that maintains state for persistence testing"""
    return MockRedisClient()


@pytest.fixture
def store_with_mock(mock_redis_client, test_settings):
    """Calibration store with mocked Redis client"""
    return CalibrationStore(test_settings, client=mock_redis_client)


@pytest.fixture
def store_with_persistence(persistent_redis_client, test_settings):
    """Calibration store backed by the stateful mock client"""
    return CalibrationStore(test_settings, client=persistent_redis_client)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def monitor(test_settings):
    """Error monitor whose retries never sleep"""
    return ErrorMonitor(test_settings, sleep=lambda seconds: None)


@pytest.fixture
def calibration_manager(store_with_persistence, test_settings, event_bus):
    return CalibrationManager(store_with_persistence, test_settings, event_bus)


@pytest.fixture
def engine(test_settings, store_with_persistence, event_bus, monitor):
    """SwingEngine with in-memory persistence"""
    return SwingEngine(test_settings, store=store_with_persistence, event_bus=event_bus, monitor=monitor)


@pytest.fixture
def swing_stream():
    """Sample stream containing exactly one complete swing"""
    return build_swing_stream()


@pytest.fixture
def device_info():
    return DeviceInfo(device_type="wearable", model="test-watch")


@pytest.fixture
def round_context():
    """Validation context for a swing taken during a round after a steady setup"""
    return ValidationContext(is_round_active=True, time_of_day=10,
                             recent_activity={"static_period": 10.0})


@pytest.fixture
def idle_context():
    """Validation context with no round in progress"""
    return ValidationContext(is_round_active=False, time_of_day=10)


@pytest.fixture
def iron_metrics():
    """Metrics matching the standard iron template"""
    return SwingMetrics(
        max_speed=12.0,
        backswing_angle=85.0,
        downswing_angle=80.0,
        impact_timing=1000.0,
        follow_through_angle=95.0,
        swing_tempo=2.8,
        swing_plane=50.0,
        clubhead_speed=75.0
    )


@pytest.fixture
def iron_phases():
    """Phase timeline close to the iron template, without a transition phase"""
    return [
        SwingPhase(phase=PhaseName.ADDRESS, start_time=0, end_time=400),
        SwingPhase(phase=PhaseName.BACKSWING, start_time=400, end_time=1100),
        SwingPhase(phase=PhaseName.DOWNSWING, start_time=1100, end_time=1350, peak_acceleration=16.0),
        SwingPhase(phase=PhaseName.IMPACT, start_time=1350, end_time=1390),
        SwingPhase(phase=PhaseName.FOLLOWTHROUGH, start_time=1390, end_time=1990),
    ]
