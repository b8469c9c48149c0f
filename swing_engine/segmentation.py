"""
Streaming phase segmentation for motion samples
"""
import logging
from enum import Enum
from typing import List, Optional, Sequence

from .config import settings as default_settings, Settings
from .errors import ErrorMonitor, SampleRejectedError, SwingAnalysisErrorType, create_error
from .metrics import MetricsEngine
from .models import MotionSample, SwingPhase, PhaseName, CompletedSwing, ClubType

logger = logging.getLogger(__name__)


class SegmenterState(str, Enum):
    IDLE = "idle"
    ADDRESS = "address"
    BACKSWING = "backswing"
    TRANSITION = "transition"
    DOWNSWING = "downswing"
    IMPACT = "impact"
    FOLLOWTHROUGH = "followthrough"


# States that belong to an active swing (abandoned if no impact arrives in time)
PRE_IMPACT_STATES = (SegmenterState.BACKSWING, SegmenterState.TRANSITION, SegmenterState.DOWNSWING)


class SwingSegmenter:
    """Finite-state machine turning a sample stream into completed swings.

    Samples must arrive with strictly increasing timestamps. The signal driving
    the transitions is ``|a| + |w| * gyro_signal_weight`` smoothed over a short
    trailing window, compared against the calibrated baseline noise and swing
    threshold.
    """

    def __init__(self, config: Optional[Settings] = None, metrics_engine: Optional[MetricsEngine] = None,
                 monitor: Optional[ErrorMonitor] = None):
        self.config = config or default_settings
        self.metrics_engine = metrics_engine or MetricsEngine(self.config)
        self.monitor = monitor or ErrorMonitor(self.config)

        self.baseline_noise = self.config.default_baseline_noise
        self.swing_threshold = self.config.default_swing_threshold
        self.expected_tempo = self.config.default_expected_tempo
        self.club_type: Optional[ClubType] = None

        self._buffer: List[MotionSample] = []
        self._signal_window: List[float] = []
        self._last_timestamp: Optional[float] = None
        self._sample_count = 0
        self._reset_swing()

    def _reset_swing(self):
        self.state = SegmenterState.IDLE
        self._phases: List[SwingPhase] = []
        self._swing_samples: List[MotionSample] = []
        self._quiet_since: Optional[float] = None
        self._phase_start: Optional[float] = None
        self._phase_peak_acc = 0.0
        self._phase_peak_rot = 0.0
        self._backswing_start: Optional[float] = None
        self._backswing_peak_signal = 0.0

    def reset(self):
        """Drop buffered samples and any swing in progress"""
        self._buffer = []
        self._signal_window = []
        self._last_timestamp = None
        self._sample_count = 0
        self._reset_swing()

    @property
    def buffer(self) -> List[MotionSample]:
        return list(self._buffer)

    def update_calibration(self, calibration) -> None:
        """Switch to a user's calibrated thresholds, or back to defaults when None"""
        if calibration is None:
            self.baseline_noise = self.config.default_baseline_noise
            self.swing_threshold = self.config.default_swing_threshold
            self.expected_tempo = self.config.default_expected_tempo
            return

        self.baseline_noise = calibration.baseline_noise
        self.swing_threshold = calibration.swing_threshold
        tempo_range = calibration.personalized_thresholds.tempo_range
        self.expected_tempo = (tempo_range.min + tempo_range.max) / 2
        logger.info("Segmenter thresholds updated: baseline=%.2f threshold=%.2f tempo=%.2f",
                    self.baseline_noise, self.swing_threshold, self.expected_tempo)

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def _reject(self, error_type: SwingAnalysisErrorType, message: str, sample: MotionSample):
        error = create_error(error_type, message, {
            "index": self._sample_count,
            "timestamp": sample.timestamp,
            "previous": self._last_timestamp,
        })
        self.monitor.handle_error(error)
        raise SampleRejectedError(error)

    def ingest(self, sample: MotionSample) -> Optional[CompletedSwing]:
        """Feed one sample through the state machine.

        Args:
            sample: Next motion sample of the stream

        Returns:
            The CompletedSwing when this sample closes a swing, else None

        Raises:
            SampleRejectedError: if the sample is non-finite or out of order
        """
        if not sample.is_finite():
            self._reject(SwingAnalysisErrorType.INVALID_MOTION_DATA,
                         f"Non-finite motion sample at index {self._sample_count}", sample)
        if self._last_timestamp is not None and sample.timestamp <= self._last_timestamp:
            self._reject(SwingAnalysisErrorType.TIMESTAMP_OUT_OF_RANGE,
                         f"Invalid timestamp ordering at index {self._sample_count}", sample)

        self._last_timestamp = sample.timestamp
        self._sample_count += 1

        self._buffer.append(sample)
        if len(self._buffer) > self.config.buffer_size:
            self._buffer = self._buffer[-self.config.buffer_trim_size:]

        raw_signal = sample.acceleration_magnitude + sample.rotation_magnitude * self.config.gyro_signal_weight
        self._signal_window.append(raw_signal)
        if len(self._signal_window) > self.config.smoothing_window:
            self._signal_window.pop(0)
        signal = sum(self._signal_window) / len(self._signal_window)

        return self._step(sample, signal)

    def _step(self, sample: MotionSample, signal: float) -> Optional[CompletedSwing]:
        t = sample.timestamp

        if self.state in PRE_IMPACT_STATES and t - self._backswing_start > self.config.swing_max_duration_ms:
            logger.debug("Abandoning swing started at %.0f: no impact within %.0fms",
                         self._backswing_start, self.config.swing_max_duration_ms)
            self._reset_swing()

        if self.state == SegmenterState.IDLE:
            if signal > self.swing_threshold:
                self._swing_samples = [sample]
                self._begin_backswing(t)
            elif signal < self.baseline_noise:
                if self._quiet_since is None:
                    self._quiet_since = t
                if t - self._quiet_since >= self.config.stability_window_ms:
                    self.state = SegmenterState.ADDRESS
                    self._phase_start = self._quiet_since
                    self._swing_samples = [s for s in self._buffer if s.timestamp >= self._quiet_since]
                    self._phase_peak_acc = max(s.acceleration_magnitude for s in self._swing_samples)
                    self._phase_peak_rot = max(s.rotation_magnitude for s in self._swing_samples)
            else:
                self._quiet_since = None
            return None

        self._swing_samples.append(sample)

        if self.state == SegmenterState.ADDRESS:
            if signal > self.swing_threshold:
                self._close_phase(PhaseName.ADDRESS, t)
                self._begin_backswing(t)
            else:
                self._track_peak(sample)
                if len(self._swing_samples) > self.config.buffer_size:
                    self._swing_samples = self._swing_samples[-self.config.buffer_trim_size:]
                    self._phase_start = self._swing_samples[0].timestamp

        elif self.state == SegmenterState.BACKSWING:
            if signal < self.config.transition_drop_ratio * self._backswing_peak_signal:
                self._close_phase(PhaseName.BACKSWING, t)
                self._open_phase(SegmenterState.TRANSITION, sample)
            else:
                self._backswing_peak_signal = max(self._backswing_peak_signal, signal)
                self._track_peak(sample)

        elif self.state == SegmenterState.TRANSITION:
            if signal > self.swing_threshold:
                self._close_phase(PhaseName.TRANSITION, t)
                self._open_phase(SegmenterState.DOWNSWING, sample)
            else:
                self._track_peak(sample)

        elif self.state == SegmenterState.DOWNSWING:
            if sample.acceleration_magnitude >= self.config.impact_threshold:
                self._close_phase(PhaseName.DOWNSWING, t)
                self._open_phase(SegmenterState.IMPACT, sample)
            else:
                self._track_peak(sample)

        elif self.state == SegmenterState.IMPACT:
            if (sample.acceleration_magnitude < self.config.impact_threshold
                    or t - self._phase_start >= self.config.impact_max_duration_ms):
                self._close_phase(PhaseName.IMPACT, t)
                self._open_phase(SegmenterState.FOLLOWTHROUGH, sample)
            else:
                self._track_peak(sample)

        elif self.state == SegmenterState.FOLLOWTHROUGH:
            if (signal < self.config.followthrough_end_ratio * self.swing_threshold
                    or t - self._phase_start >= self.config.followthrough_max_ms):
                self._close_phase(PhaseName.FOLLOWTHROUGH, t)
                return self._finish_swing()
            self._track_peak(sample)

        return None

    def _begin_backswing(self, t: float):
        self._backswing_start = t
        self._backswing_peak_signal = 0.0
        self._open_phase(SegmenterState.BACKSWING, self._swing_samples[-1])

    def _open_phase(self, state: SegmenterState, sample: MotionSample):
        self.state = state
        self._phase_start = sample.timestamp
        self._phase_peak_acc = sample.acceleration_magnitude
        self._phase_peak_rot = sample.rotation_magnitude

    def _track_peak(self, sample: MotionSample):
        self._phase_peak_acc = max(self._phase_peak_acc, sample.acceleration_magnitude)
        self._phase_peak_rot = max(self._phase_peak_rot, sample.rotation_magnitude)

    def _close_phase(self, name: PhaseName, end_time: float):
        self._phases.append(SwingPhase(
            phase=name,
            start_time=self._phase_start,
            end_time=end_time,
            peak_acceleration=self._phase_peak_acc,
            peak_angular_velocity=self._phase_peak_rot,
        ))

    def _finish_swing(self) -> CompletedSwing:
        phases = self._phases
        samples = self._swing_samples
        metrics = self.metrics_engine.compute_basic(samples, phases)
        confidence = self.metrics_engine.score_confidence(metrics, phases, self.expected_tempo)
        swing = CompletedSwing(
            is_swing=confidence >= self.config.min_swing_confidence,
            confidence=confidence,
            metrics=metrics,
            phases=phases,
            samples=samples,
            club_type=self.club_type,
        )
        logger.info("Swing closed: %d phases, confidence=%.0f, tempo=%.2f, max_speed=%.1f",
                    len(phases), confidence, metrics.swing_tempo, metrics.max_speed)
        self._reset_swing()
        return swing

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def detect_swing(self, samples: Sequence[MotionSample]) -> Optional[CompletedSwing]:
        """Replay a finished window through a fresh state machine.

        The window is validated first; an invalid window is recorded with the
        error monitor and yields None. Thresholds of this segmenter are reused.
        """
        error = self.monitor.validate_motion_data(samples)
        if error is not None:
            self.monitor.handle_error(error)
            return None

        replay = SwingSegmenter(self.config, self.metrics_engine, self.monitor)
        replay.baseline_noise = self.baseline_noise
        replay.swing_threshold = self.swing_threshold
        replay.expected_tempo = self.expected_tempo
        replay.club_type = self.club_type

        for sample in samples:
            swing = replay.ingest(sample)
            if swing is not None:
                return swing
        return None
