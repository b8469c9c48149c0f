"""
Tests for swing_engine.engine module
"""
from unittest.mock import Mock

import pytest

from conftest import build_swing_stream
from swing_engine.calibration import PersonalizedThresholds, SwingCalibration
from swing_engine.engine import SwingEngine
from swing_engine.errors import HealthStatus, SampleRejectedError, SwingAnalysisErrorType
from swing_engine.models import MetricRange, MotionSample


def run_stream(engine, samples):
    """Ingest every sample and return the swings that closed"""
    swings = []
    for sample in samples:
        swing = engine.ingest(sample)
        if swing is not None:
            swings.append(swing)
    return swings


def record_events(engine):
    events = []
    engine.subscribe("*", events.append)
    return events


@pytest.fixture
def stored_calibration():
    return SwingCalibration(
        user_id="test_user",
        baseline_noise=0.8,
        swing_threshold=6.5,
        handedness="left",
        club_type="wedge",
        personalized_thresholds=PersonalizedThresholds(
            speed_range=MetricRange(min=6.0, max=14.0),
            backswing_angle_range=MetricRange(min=60.0, max=90.0),
            tempo_range=MetricRange(min=2.0, max=3.0),
            impact_timing_range=MetricRange(min=800.0, max=1200.0),
        ),
    )


class TestIngest:
    """Test streaming input"""

    def test_stream_yields_one_swing(self, engine, swing_stream):
        """Test a full swing stream closes exactly one swing and publishes it"""
        events = record_events(engine)

        swings = run_stream(engine, swing_stream)

        assert len(swings) == 1
        assert swings[0].is_swing is True
        assert [e.event_type for e in events] == ["swing_completed"]
        assert events[0].data["swing_id"] == swings[0].swing_id

    def test_ingest_flat_dict(self, engine):
        """Test a raw dict without a source tag is read as a motion sample"""
        assert engine.ingest({"timestamp": 0, "ax": 0.0, "ay": 0.0, "az": 0.1}) is None
        assert len(engine.segmenter.buffer) == 1

    def test_ingest_device_payloads(self, engine):
        """Test wearable and handheld payloads are normalised"""
        engine.ingest({"source": "wearable", "timestamp": 0,
                       "accelerometer": {"x": 0.1, "y": 0.0, "z": 0.0}})
        engine.ingest({"source": "handheld", "timestamp": 20,
                       "acceleration": {"x": 0.0, "y": 0.2, "z": 0.0},
                       "gyroscope": {"x": 0.0, "y": 5.0, "z": 0.0}})

        buffer = engine.segmenter.buffer
        assert buffer[0].ax == 0.1
        assert buffer[0].gy == 0.0
        assert buffer[1].ay == 0.2
        assert buffer[1].gy == 5.0

    def test_malformed_payload_rejected(self, engine, monitor):
        """Test an unknown payload is rejected and recorded"""
        with pytest.raises(SampleRejectedError) as excinfo:
            engine.ingest({"source": "wearable", "timestamp": "soon"})

        assert excinfo.value.error.error_type == SwingAnalysisErrorType.INVALID_MOTION_DATA
        assert monitor.history[-1] is excinfo.value.error
        assert engine.segmenter.buffer == []

    def test_unknown_source_rejected(self, engine):
        """Test a payload from an unknown device type"""
        with pytest.raises(SampleRejectedError):
            engine.ingest({"source": "smart_ring", "timestamp": 0})

    def test_out_of_order_rejected(self, engine):
        """Test a sample older than the previous one is rejected"""
        engine.ingest(MotionSample(timestamp=100, ax=0, ay=0, az=0.1))

        with pytest.raises(SampleRejectedError) as excinfo:
            engine.ingest(MotionSample(timestamp=80, ax=0, ay=0, az=0.1))

        assert excinfo.value.error.error_type == SwingAnalysisErrorType.TIMESTAMP_OUT_OF_RANGE

    def test_detect_swing(self, engine, swing_stream):
        """Test batch detection over a window"""
        swing = engine.detect_swing(swing_stream)

        assert swing is not None
        assert swing.is_swing is True


class TestProcess:
    """Test full analysis of a completed swing"""

    @pytest.fixture
    def swing(self, engine, swing_stream):
        return run_stream(engine, swing_stream)[0]

    def test_accepted_during_round(self, engine, swing, round_context):
        """Test a swing during a round is accepted with full analysis"""
        events = record_events(engine)

        analysis = engine.process(swing, round_context)

        assert analysis.accepted is True
        assert analysis.detailed_metrics is not None
        assert analysis.efficiency is not None
        assert len(analysis.pattern_matches) == 3
        assert analysis.best_match is analysis.pattern_matches[0]
        assert analysis.validation.false_positive_risk < 40

        assert [e.event_type for e in events] == ["swing_detected"]
        data = events[0].data
        assert data["swing_id"] == swing.swing_id
        assert data["best_template"] == analysis.best_match.template_id
        assert data["confidence"] == analysis.validation.adjusted_confidence

    def test_rejected_without_round(self, engine, swing, idle_context):
        """Test the same swing is rejected outside a round"""
        events = record_events(engine)

        analysis = engine.process(swing, idle_context)

        assert analysis.accepted is False
        assert [e.event_type for e in events] == ["swing_rejected"]

    def test_default_context(self, engine, swing):
        """Test processing without a context assumes no active round"""
        analysis = engine.process(swing)

        assert analysis.accepted is False
        assert analysis.validation.false_positive_risk >= 40

    def test_club_filter(self, engine, swing, round_context):
        """Test a swing with a known club is matched against that club only"""
        iron_swing = swing.model_copy(update={"club_type": "iron"})

        analysis = engine.process(iron_swing, round_context)

        assert [m.template_id for m in analysis.pattern_matches] == ["iron_standard"]

    def test_club_without_templates_falls_back(self, engine, swing, round_context):
        """Test a club with no templates is matched against all of them"""
        putt = swing.model_copy(update={"club_type": "putter"})

        analysis = engine.process(putt, round_context)

        assert len(analysis.pattern_matches) == 3

    def test_metrics_failure_recorded(self, engine, swing, round_context, monitor, monkeypatch):
        """Test a metrics failure is recorded and validation still runs"""
        monkeypatch.setattr(engine.metrics_engine, "compute_detailed", Mock(side_effect=ValueError("bad window")))

        analysis = engine.process(swing, round_context)

        assert analysis.detailed_metrics is None
        assert analysis.efficiency is None
        assert monitor.history[-1].error_type == SwingAnalysisErrorType.METRICS_CALCULATION_FAILED
        assert analysis.validation is not None

    def test_analyses_feed_error_rate(self, engine, swing, round_context, monitor):
        """Test processed swings count towards the monitor's hourly error rate"""
        for _ in range(5):
            engine.process(swing, round_context)
        monitor.handle_error("something odd")

        assert monitor.check_error_patterns() is False

        monitor.handle_error("something odd")
        assert monitor.check_error_patterns() is True


class TestCalibrationFlow:
    """Test calibration through the engine"""

    def test_calibration_updates_active_user(self, engine, device_info, swing_stream):
        """Test completing a session applies the new thresholds to the stream's user"""
        engine.set_user("test_user")
        events = record_events(engine)
        engine.start_session("test_user", device_info)

        for i in range(5):
            engine.segmenter.reset()
            swing = run_stream(engine, build_swing_stream(start=i * 10000))[0]
            engine.add_swing("test_user", swing, confirmed=True)

        calibration = engine.complete_session("test_user")

        assert calibration.swing_threshold == pytest.approx(16.0)
        assert calibration.handedness == "right"
        assert calibration.club_type == "iron"
        assert engine.segmenter.swing_threshold == pytest.approx(16.0)
        assert engine.segmenter.expected_tempo == pytest.approx(2.0)

        types = [e.event_type for e in events]
        assert types[0] == "calibration_started"
        assert "calibration_completed" in types

    def test_calibration_for_other_user(self, engine, device_info, swing_stream):
        """Test calibrating a different user leaves the stream thresholds alone"""
        engine.set_user("stream_owner")
        swing = run_stream(engine, swing_stream)[0]
        engine.start_session("other_user", device_info)
        for _ in range(5):
            engine.add_swing("other_user", swing, confirmed=True, club_type="driver")

        calibration = engine.complete_session("other_user")

        assert calibration.club_type == "driver"
        assert engine.segmenter.swing_threshold == engine.config.default_swing_threshold

    def test_progress_and_cancel(self, engine, device_info, swing_stream):
        """Test session progress and cancellation"""
        swing = run_stream(engine, swing_stream)[0]
        engine.start_session("test_user", device_info)
        engine.add_swing("test_user", swing, confirmed=True)

        progress = engine.calibration_progress("test_user")
        assert progress.swings_collected == 1

        assert engine.cancel_session("test_user") is True
        assert engine.calibration_progress("test_user") is None

    def test_set_user_loads_stored_calibration(self, test_settings, store_with_persistence, stored_calibration):
        """Test a stored calibration is applied when the user is set"""
        store_with_persistence.save_calibration(stored_calibration)

        engine = SwingEngine(test_settings, store=store_with_persistence, user_id="test_user")

        assert engine.segmenter.swing_threshold == 6.5
        assert engine.segmenter.baseline_noise == 0.8
        assert engine.segmenter.expected_tempo == pytest.approx(2.5)
        assert engine.segmenter.club_type == "wedge"

    def test_set_user_without_calibration(self, engine):
        """Test an uncalibrated user gets default thresholds"""
        assert engine.set_user("new_user") is None
        assert engine.segmenter.swing_threshold == engine.config.default_swing_threshold

    def test_adapt_updates_segmenter(self, engine, store_with_persistence, stored_calibration, iron_metrics):
        """Test a confirmed detection nudges the active user's threshold"""
        store_with_persistence.save_calibration(stored_calibration)
        engine.set_user("test_user")

        updated = engine.adapt("test_user", iron_metrics, was_correct=True)

        # max speed 12 -> threshold pulled toward 9.6
        assert updated.swing_threshold == pytest.approx(0.9 * 6.5 + 0.1 * 9.6)
        assert engine.segmenter.swing_threshold == pytest.approx(updated.swing_threshold)

    def test_adapt_unknown_user(self, engine, iron_metrics):
        """Test adapting a user with no calibration"""
        assert engine.adapt("nobody", iron_metrics, was_correct=False) is None


class TestHealth:
    """Test health checks and error handling"""

    def test_health_includes_persistence(self, engine):
        """Test the store is probed alongside the built-in subsystems"""
        result = engine.health_check()

        assert result.services["persistence"].status == HealthStatus.HEALTHY
        assert result.overall == HealthStatus.HEALTHY

    def test_unreachable_store(self, test_settings, store_with_mock, monitor):
        """Test an unreachable store makes the persistence probe unhealthy"""
        store_with_mock.redis_client.ping.side_effect = Exception("Connection refused")
        engine = SwingEngine(test_settings, store=store_with_mock, monitor=monitor)

        result = engine.health_check()

        assert result.services["persistence"].status == HealthStatus.UNHEALTHY
        assert result.overall == HealthStatus.HEALTHY
        assert "Check persistence subsystem" in result.recommendations

    def test_no_store_no_probe(self, test_settings, monitor):
        """Test engines without a store skip the persistence probe"""
        engine = SwingEngine(test_settings, monitor=monitor)

        assert "persistence" not in engine.health_check().services

    def test_handle_error(self, engine, monitor):
        """Test errors are recorded on the shared monitor"""
        error = engine.handle_error(RuntimeError("Garmin disconnected"), {"device": "watch"})

        assert error.error_type == SwingAnalysisErrorType.WEARABLE_CONNECTION_LOST
        assert monitor.history == [error]
