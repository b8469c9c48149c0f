"""
Tests for swing_engine.segmentation module
"""
import math

import pytest

from swing_engine.errors import SampleRejectedError, SwingAnalysisErrorType
from swing_engine.models import MotionSample, PhaseName
from swing_engine.segmentation import SegmenterState, SwingSegmenter


def quiet(count, start=0.0):
    return [MotionSample(timestamp=start + i * 20, ax=0.0, ay=0.0, az=0.1) for i in range(count)]


def feed(segmenter, samples):
    return [swing for swing in (segmenter.ingest(s) for s in samples) if swing is not None]


@pytest.fixture
def segmenter(test_settings, monitor):
    return SwingSegmenter(test_settings, monitor=monitor)


class TestSwingSegmenter:
    """Test the streaming phase state machine"""

    def test_initial_state(self, segmenter):
        """Test segmenter starts idle with default thresholds"""
        assert segmenter.state == SegmenterState.IDLE
        assert segmenter.baseline_noise == 0.5
        assert segmenter.swing_threshold == 3.0
        assert segmenter.buffer == []

    def test_quiet_stream_reaches_address(self, segmenter):
        """Test that a stable period registers address"""
        feed(segmenter, quiet(11))

        assert segmenter.state == SegmenterState.ADDRESS

    def test_short_quiet_period_stays_idle(self, segmenter):
        """Test that less than the stability window stays idle"""
        feed(segmenter, quiet(5))

        assert segmenter.state == SegmenterState.IDLE

    def test_full_swing_detected(self, segmenter, swing_stream):
        """Test that a complete swing closes exactly once, on the last sample"""
        results = [segmenter.ingest(s) for s in swing_stream]

        assert all(r is None for r in results[:-1])
        swing = results[-1]
        assert swing is not None
        assert swing.is_swing is True
        assert swing.confidence == 100
        assert len(swing.samples) == len(swing_stream)
        assert segmenter.state == SegmenterState.IDLE

    def test_phase_order_and_bounds(self, segmenter, swing_stream):
        """Test phases are ordered, contiguous and non-negative"""
        swing = feed(segmenter, swing_stream)[0]

        assert [p.phase for p in swing.phases] == [
            PhaseName.ADDRESS, PhaseName.BACKSWING, PhaseName.TRANSITION,
            PhaseName.DOWNSWING, PhaseName.IMPACT, PhaseName.FOLLOWTHROUGH,
        ]
        bounds = [(p.start_time, p.end_time) for p in swing.phases]
        assert bounds == [(0, 320), (320, 720), (720, 760), (760, 960), (960, 1000), (1000, 1240)]
        for previous, current in zip(swing.phases, swing.phases[1:]):
            assert previous.end_time <= current.start_time
        assert swing.duration == 1240

    def test_phase_peaks(self, segmenter, swing_stream):
        """Test per-phase peak acceleration tracking"""
        swing = feed(segmenter, swing_stream)[0]
        peaks = {p.phase: p.peak_acceleration for p in swing.phases}

        assert peaks[PhaseName.IMPACT] == 20.0
        assert peaks[PhaseName.DOWNSWING] == 8.0
        assert peaks[PhaseName.BACKSWING] == 5.0

    def test_basic_metrics(self, segmenter, swing_stream):
        """Test basic metrics emitted with the swing"""
        metrics = feed(segmenter, swing_stream)[0].metrics

        assert metrics.swing_tempo == pytest.approx(2.0)
        assert metrics.max_speed == pytest.approx(20.0)
        assert metrics.clubhead_speed == 108
        assert metrics.impact_timing == 640
        assert metrics.backswing_angle == pytest.approx(36.19, abs=0.01)
        assert metrics.follow_through_angle == pytest.approx(27.69, abs=0.01)

    def test_two_swings_in_one_stream(self, segmenter, swing_stream):
        """Test that the segmenter returns to idle and detects the next swing"""
        from conftest import build_swing_stream
        second = build_swing_stream(start=swing_stream[-1].timestamp + 20)

        swings = feed(segmenter, swing_stream + second)

        assert len(swings) == 2
        assert swings[1].phases[0].start_time > swings[0].phases[-1].end_time

    def test_club_type_attached(self, segmenter, swing_stream):
        """Test that the configured club is attached to the swing"""
        segmenter.club_type = "driver"

        swing = feed(segmenter, swing_stream)[0]

        assert swing.club_type == "driver"

    def test_abandoned_swing_without_impact(self, segmenter):
        """Test that a swing with no impact is dropped after the maximum duration"""
        samples = quiet(15)
        samples += [MotionSample(timestamp=300 + i * 20, ax=0.0, ay=0.0, az=5.0) for i in range(10)]
        samples += [MotionSample(timestamp=500 + i * 20, ax=0.0, ay=0.0, az=2.0) for i in range(150)]

        swings = feed(segmenter, samples)

        assert swings == []
        assert segmenter.state == SegmenterState.IDLE

    def test_calibrated_threshold_suppresses_detection(self, segmenter, swing_stream):
        """Test that a high calibrated threshold ignores the swing"""
        segmenter.swing_threshold = 50.0

        assert feed(segmenter, swing_stream) == []


class TestSampleRejection:
    """Test fail-fast ingestion checks"""

    def test_out_of_order_timestamp(self, segmenter, monitor):
        """Test that a repeated timestamp is rejected with its index"""
        feed(segmenter, quiet(3))

        with pytest.raises(SampleRejectedError) as exc_info:
            segmenter.ingest(MotionSample(timestamp=40, ax=0.0, ay=0.0, az=0.1))

        error = exc_info.value.error
        assert error.error_type == SwingAnalysisErrorType.TIMESTAMP_OUT_OF_RANGE
        assert error.context["index"] == 3
        assert error.context["previous"] == 40
        assert monitor.history[-1].error_type == SwingAnalysisErrorType.TIMESTAMP_OUT_OF_RANGE

    def test_non_finite_sample(self, segmenter):
        """Test that NaN readings are rejected"""
        with pytest.raises(SampleRejectedError) as exc_info:
            segmenter.ingest(MotionSample(timestamp=0, ax=math.nan, ay=0.0, az=0.0))

        assert exc_info.value.error.error_type == SwingAnalysisErrorType.INVALID_MOTION_DATA

    def test_rejected_sample_not_buffered(self, segmenter):
        """Test that a rejected sample leaves the stream untouched"""
        feed(segmenter, quiet(2))

        with pytest.raises(SampleRejectedError):
            segmenter.ingest(MotionSample(timestamp=0, ax=0.0, ay=0.0, az=0.1))

        assert len(segmenter.buffer) == 2
        segmenter.ingest(MotionSample(timestamp=40, ax=0.0, ay=0.0, az=0.1))
        assert len(segmenter.buffer) == 3


class TestBuffer:
    """Test bounded sample buffer"""

    def test_buffer_trimmed_on_overflow(self, segmenter):
        """Test that the buffer keeps the newest samples after overflowing"""
        samples = quiet(1001)
        feed(segmenter, samples)

        buffer = segmenter.buffer
        assert len(buffer) == 500
        assert buffer[-1].timestamp == samples[-1].timestamp

    def test_reset_clears_buffer(self, segmenter, swing_stream):
        """Test reset drops buffered samples and any swing in progress"""
        feed(segmenter, swing_stream[:30])

        segmenter.reset()

        assert segmenter.buffer == []
        assert segmenter.state == SegmenterState.IDLE
        # Timestamps may restart after a reset
        segmenter.ingest(MotionSample(timestamp=0, ax=0.0, ay=0.0, az=0.1))


class TestCalibration:
    """Test applying calibrated thresholds"""

    def test_update_calibration(self, segmenter):
        """Test thresholds taken from a calibration"""
        from swing_engine.calibration import PersonalizedThresholds, SwingCalibration
        from swing_engine.models import MetricRange

        calibration = SwingCalibration(
            user_id="user_1",
            baseline_noise=0.8,
            swing_threshold=6.0,
            handedness="right",
            club_type="iron",
            personalized_thresholds=PersonalizedThresholds(
                speed_range=MetricRange(min=8, max=16),
                backswing_angle_range=MetricRange(min=70, max=90),
                tempo_range=MetricRange(min=2.0, max=3.0),
                impact_timing_range=MetricRange(min=900, max=1100),
            ),
        )

        segmenter.update_calibration(calibration)

        assert segmenter.baseline_noise == 0.8
        assert segmenter.swing_threshold == 6.0
        assert segmenter.expected_tempo == 2.5

        segmenter.update_calibration(None)

        assert segmenter.baseline_noise == 0.5
        assert segmenter.swing_threshold == 3.0
        assert segmenter.expected_tempo == 3.0


class TestDetectSwing:
    """Test batch detection over a finished window"""

    def test_detect_swing(self, segmenter, swing_stream):
        """Test replaying a valid window"""
        swing = segmenter.detect_swing(swing_stream)

        assert swing is not None
        assert swing.is_swing is True
        # The live segmenter is untouched
        assert segmenter.buffer == []

    def test_detect_swing_insufficient_data(self, segmenter, monitor, swing_stream):
        """Test that short windows are recorded and yield None"""
        assert segmenter.detect_swing(swing_stream[:10]) is None
        assert monitor.history[-1].error_type == SwingAnalysisErrorType.INSUFFICIENT_DATA_POINTS

    def test_detect_swing_out_of_order(self, segmenter, monitor, swing_stream):
        """Test that an unordered window reports the offending index"""
        samples = list(swing_stream)
        samples[20] = samples[20].model_copy(update={"timestamp": samples[19].timestamp})

        assert segmenter.detect_swing(samples) is None
        error = monitor.history[-1]
        assert error.error_type == SwingAnalysisErrorType.TIMESTAMP_OUT_OF_RANGE
        assert error.context["index"] == 20
