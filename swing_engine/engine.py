"""
Swing engine: wires segmentation, metrics, pattern matching, validation,
calibration and error monitoring behind one object
"""
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .config import settings as default_settings, Settings
from .calibration import (
    CalibrationManager, CalibrationProgress, CalibrationSession, CalibrationSwing,
    DeviceInfo, EnvironmentalConditions, SwingCalibration, UserFeedback
)
from .errors import (
    ErrorMonitor, HealthCheckResult, HealthStatus, SampleRejectedError, ServiceHealth,
    SwingAnalysisError, SwingAnalysisErrorType, create_error
)
from .events import EventBus, EventCallback, Subscription
from .metrics import MetricsEngine
from .models import (
    ClubType, CompletedSwing, DetailedSwingMetrics, HandheldReading, MotionSample,
    SwingEfficiencyMetrics, SwingEvent, SwingMetrics, WearableReading, parse_payload
)
from .pattern_matcher import PatternMatcher, PatternMatchResult
from .segmentation import SwingSegmenter
from .templates import TemplateLibrary
from .validation import SwingValidator, ValidationContext, ValidationResult

logger = logging.getLogger(__name__)

SampleInput = Union[MotionSample, WearableReading, HandheldReading, Dict[str, Any]]


class SwingAnalysis(BaseModel):
    """Everything the engine derived for one completed swing"""
    swing: CompletedSwing
    detailed_metrics: Optional[DetailedSwingMetrics] = None
    efficiency: Optional[SwingEfficiencyMetrics] = None
    pattern_matches: List[PatternMatchResult] = Field(default_factory=list)
    validation: ValidationResult

    @property
    def best_match(self) -> Optional[PatternMatchResult]:
        return self.pattern_matches[0] if self.pattern_matches else None

    @property
    def accepted(self) -> bool:
        return self.swing.is_swing and self.validation.is_valid


class SwingEngine:
    """Swing intelligence engine for one motion stream.

    Collaborators are injected; anything omitted is built from ``config``.
    Completed swings are returned from ``ingest`` on the caller's thread, so
    results arrive in the order the swings closed.
    """

    def __init__(self, config: Optional[Settings] = None, store=None,
                 event_bus: Optional[EventBus] = None, monitor: Optional[ErrorMonitor] = None,
                 library: Optional[TemplateLibrary] = None, user_id: Optional[str] = None):
        self.config = config or default_settings
        self.store = store
        self.event_bus = event_bus or EventBus()
        self.monitor = monitor or ErrorMonitor(self.config)
        self.metrics_engine = MetricsEngine(self.config)
        self.segmenter = SwingSegmenter(self.config, self.metrics_engine, self.monitor)
        self.matcher = PatternMatcher(library)
        self.validator = SwingValidator(self.config)
        self.calibration = CalibrationManager(store, self.config, self.event_bus)
        self.user_id: Optional[str] = None

        if store is not None:
            self.monitor.register_probe("persistence", self._check_persistence_health,
                                        SwingAnalysisErrorType.SERVER_UNAVAILABLE)
        if user_id is not None:
            self.set_user(user_id)

    def set_user(self, user_id: Optional[str]) -> Optional[SwingCalibration]:
        """Switch the stream's owner and load their calibrated thresholds"""
        self.user_id = user_id
        calibration = self.calibration.get_calibration(user_id) if user_id else None
        self.segmenter.update_calibration(calibration)
        if calibration is not None:
            self.segmenter.club_type = calibration.club_type
        logger.info("Engine user set to %s (calibrated=%s)", user_id, calibration is not None)
        return calibration

    def set_club(self, club_type: Optional[ClubType]):
        self.segmenter.club_type = club_type

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    def _to_sample(self, data: SampleInput) -> MotionSample:
        if isinstance(data, MotionSample):
            return data
        if isinstance(data, (WearableReading, HandheldReading)):
            return data.to_sample()
        try:
            if "source" not in data:
                return MotionSample.model_validate(data)
            return parse_payload(data).to_sample()
        except ValidationError as e:
            error = create_error(SwingAnalysisErrorType.INVALID_MOTION_DATA,
                                 f"Unrecognised sensor payload: {e.error_count()} validation errors",
                                 {"payload": data})
            self.monitor.handle_error(error)
            raise SampleRejectedError(error) from e

    def ingest(self, data: SampleInput) -> Optional[CompletedSwing]:
        """Feed one sample or device payload to the segmenter.

        :param data: MotionSample, payload variant, or raw payload dict
        :return: The completed swing when this sample closes one, else None
        :raises SampleRejectedError: on malformed, non-finite or out-of-order input
        """
        swing = self.segmenter.ingest(self._to_sample(data))
        if swing is not None:
            self._publish("swing_completed", {
                "swing_id": swing.swing_id,
                "confidence": swing.confidence,
                "is_swing": swing.is_swing,
            })
        return swing

    def detect_swing(self, samples: List[MotionSample]) -> Optional[CompletedSwing]:
        return self.segmenter.detect_swing(samples)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def compute_detailed(self, swing: CompletedSwing) -> DetailedSwingMetrics:
        basic = swing.metrics or self.metrics_engine.compute_basic(swing.samples, swing.phases)
        return self.metrics_engine.compute_detailed(swing.samples, swing.phases, basic)

    def compute_efficiency(self, detailed: DetailedSwingMetrics) -> SwingEfficiencyMetrics:
        return self.metrics_engine.compute_efficiency(detailed)

    def match_templates(self, swing: CompletedSwing,
                        club_filter: Optional[ClubType] = None) -> List[PatternMatchResult]:
        return self.matcher.match(swing.metrics, swing.phases, swing.samples, club_filter)

    def validate(self, swing: CompletedSwing, context: ValidationContext,
                 pattern_match: Optional[PatternMatchResult] = None) -> ValidationResult:
        return self.validator.validate(swing, context, pattern_match)

    def process(self, swing: CompletedSwing, context: Optional[ValidationContext] = None) -> SwingAnalysis:
        """Run detailed metrics, template matching and validation for a completed swing.

        Publishes ``swing_detected`` when the swing is accepted and
        ``swing_rejected`` otherwise.
        """
        context = context or ValidationContext(is_round_active=False, time_of_day=datetime.now().hour)
        self.monitor.record_analysis()

        detailed = efficiency = None
        try:
            detailed = self.compute_detailed(swing)
            efficiency = self.compute_efficiency(detailed)
        except (ValueError, TypeError, ZeroDivisionError) as e:
            self.monitor.handle_error(e, {"swing_id": swing.swing_id},
                                      SwingAnalysisErrorType.METRICS_CALCULATION_FAILED)

        matches = self.match_templates(swing, swing.club_type) if swing.club_type else []
        if not matches:
            matches = self.match_templates(swing)
        best = matches[0] if matches else None

        validation = self.validate(swing, context, best)
        analysis = SwingAnalysis(swing=swing, detailed_metrics=detailed, efficiency=efficiency,
                                 pattern_matches=matches, validation=validation)

        self._publish("swing_detected" if analysis.accepted else "swing_rejected", {
            "swing_id": swing.swing_id,
            "confidence": validation.adjusted_confidence,
            "false_positive_risk": validation.false_positive_risk,
            "best_template": best.template_id if best else None,
            "overall_match": best.overall_match if best else None,
        })
        return analysis

    # -------------------------------------------------------------------------
    # Calibration
    # -------------------------------------------------------------------------

    def start_session(self, user_id: str, device: DeviceInfo,
                      environment: Optional[EnvironmentalConditions] = None) -> CalibrationSession:
        session = self.calibration.start_session(user_id, device, environment)
        self._publish("calibration_started", {"session_id": session.session_id}, user_id)
        return session

    def add_swing(self, user_id: str, swing: CompletedSwing, confirmed: bool,
                  club_type: Optional[ClubType] = None,
                  feedback: Optional[UserFeedback] = None) -> CalibrationSwing:
        """Add a detected swing to the user's calibration session"""
        metrics = swing.metrics or self.metrics_engine.compute_basic(swing.samples, swing.phases)
        club = club_type or swing.club_type or "iron"
        return self.calibration.add_swing(user_id, metrics, swing.samples, club, confirmed, feedback)

    def complete_session(self, user_id: str) -> Optional[SwingCalibration]:
        calibration = self.calibration.complete_session(user_id)
        if calibration is not None and user_id == self.user_id:
            self.segmenter.update_calibration(calibration)
        return calibration

    def cancel_session(self, user_id: str) -> bool:
        return self.calibration.cancel_session(user_id)

    def calibration_progress(self, user_id: str) -> Optional[CalibrationProgress]:
        return self.calibration.progress(user_id)

    def adapt(self, user_id: str, metrics: SwingMetrics, was_correct: bool) -> Optional[SwingCalibration]:
        """Feed a user's verdict on a detection back into their calibration"""
        calibration = self.calibration.adapt(user_id, metrics, was_correct)
        if calibration is not None and user_id == self.user_id:
            self.segmenter.update_calibration(calibration)
        return calibration

    # -------------------------------------------------------------------------
    # Errors, health and events
    # -------------------------------------------------------------------------

    def handle_error(self, error, context: Optional[Dict[str, Any]] = None,
                     error_type: Optional[SwingAnalysisErrorType] = None) -> SwingAnalysisError:
        return self.monitor.handle_error(error, context, error_type)

    def health_check(self) -> HealthCheckResult:
        return self.monitor.perform_health_check()

    def _check_persistence_health(self) -> ServiceHealth:
        start = time.monotonic()
        reachable = self.store.ping()
        latency = (time.monotonic() - start) * 1000
        return ServiceHealth(status=HealthStatus.HEALTHY if reachable else HealthStatus.UNHEALTHY,
                             latency_ms=latency)

    def subscribe(self, event_type: str, callback: EventCallback) -> Subscription:
        return self.event_bus.subscribe(event_type, callback)

    def _publish(self, event_type: str, data: Dict[str, Any], user_id: Optional[str] = None):
        self.event_bus.publish(SwingEvent(event_type=event_type, user_id=user_id or self.user_id, data=data))
