"""
Per-user calibration sessions and adaptive threshold learning
"""
import logging
import threading
import uuid
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

import numpy as np
from pydantic import BaseModel, Field

from .config import settings as default_settings, Settings
from .errors import CalibrationError
from .events import EventBus
from .models import ClubType, MetricRange, MotionSample, SwingEvent, SwingMetrics
from global_config import (
    INITIAL_LEARNING_RATE, MIN_LEARNING_RATE, LEARNING_RATE_DECAY,
    INITIAL_CONFIDENCE_THRESHOLD, MAX_CONFIDENCE_THRESHOLD
)

logger = logging.getLogger(__name__)


class UserFeedback(BaseModel):
    ball_contact: Literal["solid", "thin", "fat", "miss"]
    shot_result: Literal["good", "okay", "poor"]
    felt_rhythm: Literal["smooth", "rushed", "slow"]
    confidence: int = Field(..., ge=1, le=10, description="User confidence in the swing")


class EnvironmentalConditions(BaseModel):
    temperature: float = Field(20.0, description="Celsius")
    wind_level: float = Field(0.0, description="0-10 scale")
    course_type: Literal["driving_range", "practice_area", "course"] = "driving_range"
    ground_condition: Literal["firm", "soft", "wet"] = "firm"


class DeviceInfo(BaseModel):
    device_type: Literal["wearable", "handheld"]
    model: Optional[str] = None
    signal_strength: float = Field(100.0, description="0-100")
    battery_level: float = Field(100.0, description="0-100")
    firmware_version: Optional[str] = None


class CalibrationSwing(BaseModel):
    swing_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=datetime.now)
    confirmed: bool = Field(..., description="User confirmed this is a real swing")
    club_type: ClubType
    metrics: SwingMetrics
    raw_data: List[MotionSample] = Field(default_factory=list)
    user_feedback: Optional[UserFeedback] = None


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CalibrationSession(BaseModel):
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    swings: List[CalibrationSwing] = Field(default_factory=list)
    environment: EnvironmentalConditions = Field(default_factory=EnvironmentalConditions)
    device: DeviceInfo
    status: SessionStatus = SessionStatus.ACTIVE


class PersonalizedThresholds(BaseModel):
    speed_range: MetricRange
    backswing_angle_range: MetricRange
    tempo_range: MetricRange
    impact_timing_range: MetricRange
    confidence_threshold: float = INITIAL_CONFIDENCE_THRESHOLD


class SwingCalibration(BaseModel):
    """Per-user detection thresholds, persisted by user id"""
    user_id: str
    baseline_noise: float
    swing_threshold: float
    handedness: Literal["right", "left"]
    club_type: ClubType
    personalized_thresholds: PersonalizedThresholds
    updated_at: datetime = Field(default_factory=datetime.now)


class AdaptiveLearningData(BaseModel):
    user_id: str
    total_swings: int = 0
    confirmed_swings: int = 0
    false_positives: int = 0
    accuracy: float = 0.0
    last_updated: datetime = Field(default_factory=datetime.now)
    learning_rate: float = INITIAL_LEARNING_RATE
    stability_period: int = 20


class CalibrationProgress(BaseModel):
    swings_collected: int
    target_swings: int
    clubs_calibrated: List[str]
    accuracy_improvement: int
    recommended_next_steps: List[str]


def _widen(values: List[float], low_factor: float, high_factor: float) -> MetricRange:
    low, high = min(values) * low_factor, max(values) * high_factor
    return MetricRange(min=min(low, high), max=max(low, high))


class CalibrationManager:
    """Runs calibration sessions and adapts each user's thresholds over time.

    Calibrations and learning data are cached per user id and loaded lazily
    from the injected store; each active session is guarded by its own lock.
    """

    def __init__(self, store=None, config: Optional[Settings] = None, event_bus: Optional[EventBus] = None):
        self.store = store
        self.config = config or default_settings
        self.event_bus = event_bus

        self._sessions: Dict[str, CalibrationSession] = {}
        self._session_locks: Dict[str, threading.Lock] = {}
        self._calibrations: Dict[str, SwingCalibration] = {}
        self._learning_data: Dict[str, AdaptiveLearningData] = {}
        self._registry_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def start_session(self, user_id: str, device: DeviceInfo,
                      environment: Optional[EnvironmentalConditions] = None) -> CalibrationSession:
        """Open a calibration session.

        Raises:
            CalibrationError: if the user already has an active session
        """
        with self._registry_lock:
            if user_id in self._sessions:
                raise CalibrationError(f"User {user_id} already has an active calibration session")
            session = CalibrationSession(user_id=user_id, device=device,
                                         environment=environment or EnvironmentalConditions())
            self._sessions[user_id] = session
            self._session_locks[user_id] = threading.Lock()

        self._save_session(session)
        logger.info("Started calibration session %s for user %s (%s)",
                    session.session_id, user_id, session.environment.course_type)
        return session

    def get_session(self, user_id: str) -> Optional[CalibrationSession]:
        with self._registry_lock:
            return self._sessions.get(user_id)

    def _active(self, user_id: str):
        with self._registry_lock:
            session = self._sessions.get(user_id)
            lock = self._session_locks.get(user_id)
        if session is None:
            raise CalibrationError(f"No active calibration session for user {user_id}")
        return session, lock

    def add_swing(self, user_id: str, metrics: SwingMetrics, raw_data: List[MotionSample],
                  club_type: ClubType, confirmed: bool = False,
                  feedback: Optional[UserFeedback] = None) -> CalibrationSwing:
        """Record a swing in the user's active session"""
        session, lock = self._active(user_id)
        swing = CalibrationSwing(confirmed=confirmed, club_type=club_type, metrics=metrics,
                                 raw_data=list(raw_data), user_feedback=feedback)
        with lock:
            if session.status != SessionStatus.ACTIVE:
                raise CalibrationError(f"Calibration session {session.session_id} is {session.status.value}")
            session.swings.append(swing)
            self._save_session(session)

        self._record_observation(user_id, confirmed)
        logger.info("Added calibration swing %s (confirmed=%s, club=%s, total=%d)",
                    swing.swing_id, confirmed, club_type, len(session.swings))
        return swing

    def complete_session(self, user_id: str) -> Optional[SwingCalibration]:
        """Close the active session and derive a calibration from it.

        Returns:
            The new SwingCalibration, or None when fewer than the minimum
            number of swings were confirmed. The session terminates either way.
        """
        session, lock = self._active(user_id)
        with lock:
            session.end_time = datetime.now()
            session.status = SessionStatus.COMPLETED
            calibration = self.derive_calibration(session)
            self._save_session(session)

        with self._registry_lock:
            self._sessions.pop(user_id, None)
            self._session_locks.pop(user_id, None)

        if calibration is None:
            logger.warning("Calibration session %s completed without enough confirmed swings",
                           session.session_id)
            return None

        self._set_calibration(calibration)
        self._publish("calibration_completed", user_id, {
            "session_id": session.session_id,
            "swing_threshold": calibration.swing_threshold,
            "handedness": calibration.handedness,
        })
        logger.info("Calibration session %s completed: threshold=%.2f handedness=%s",
                    session.session_id, calibration.swing_threshold, calibration.handedness)
        return calibration

    def cancel_session(self, user_id: str) -> bool:
        """Discard the user's active session; False if there was none"""
        with self._registry_lock:
            session = self._sessions.pop(user_id, None)
            lock = self._session_locks.pop(user_id, None)
        if session is None:
            return False

        with lock:
            session.status = SessionStatus.CANCELLED
            session.end_time = datetime.now()
        self._save_session(session)
        logger.info("Calibration session %s cancelled", session.session_id)
        return True

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    def derive_calibration(self, session: CalibrationSession) -> Optional[SwingCalibration]:
        confirmed = [s for s in session.swings if s.confirmed]
        if len(confirmed) < self.config.min_confirmed_swings:
            return None

        speeds = [s.metrics.max_speed for s in confirmed]
        thresholds = PersonalizedThresholds(
            speed_range=_widen(speeds, 0.8, 1.2),
            backswing_angle_range=_widen([s.metrics.backswing_angle for s in confirmed], 0.9, 1.1),
            tempo_range=_widen([s.metrics.swing_tempo for s in confirmed], 0.8, 1.2),
            impact_timing_range=_widen([s.metrics.impact_timing for s in confirmed], 0.9, 1.1),
            confidence_threshold=INITIAL_CONFIDENCE_THRESHOLD,
        )

        return SwingCalibration(
            user_id=session.user_id,
            baseline_noise=self.baseline_noise(session.swings),
            swing_threshold=min(speeds) * 0.8,
            handedness=self.handedness(confirmed),
            club_type=Counter(s.club_type for s in confirmed).most_common(1)[0][0],
            personalized_thresholds=thresholds,
        )

    def baseline_noise(self, swings: List[CalibrationSwing]) -> float:
        """95th percentile acceleration magnitude over unconfirmed swings"""
        magnitudes = sorted(
            sample.acceleration_magnitude
            for swing in swings if not swing.confirmed
            for sample in swing.raw_data
        )
        if not magnitudes:
            return self.config.default_baseline_noise
        return magnitudes[int(len(magnitudes) * 0.95)] or self.config.default_baseline_noise

    @staticmethod
    def handedness(confirmed: List[CalibrationSwing]) -> str:
        """Majority sign of mean gyro Y across confirmed swings"""
        right = left = 0
        for swing in confirmed:
            if not swing.raw_data:
                continue
            if np.mean([sample.gy for sample in swing.raw_data]) > 0:
                right += 1
            else:
                left += 1
        return "right" if right > left else "left"

    # -------------------------------------------------------------------------
    # Adaptive learning
    # -------------------------------------------------------------------------

    def _record_observation(self, user_id: str, confirmed: bool) -> AdaptiveLearningData:
        with self._registry_lock:
            data = self._learning_data.get(user_id)
            if data is None:
                data = self._load_learning_data(user_id)
            data.total_swings += 1
            if confirmed:
                data.confirmed_swings += 1
            else:
                data.false_positives += 1
            data.accuracy = data.confirmed_swings / data.total_swings
            data.last_updated = datetime.now()
            if data.total_swings > data.stability_period:
                data.learning_rate = max(MIN_LEARNING_RATE, data.learning_rate * LEARNING_RATE_DECAY)
            self._learning_data[user_id] = data

        if self.store is not None:
            self.store.save_learning_data(data)
        logger.debug("Learning data for %s: total=%d accuracy=%.0f%%",
                     user_id, data.total_swings, data.accuracy * 100)
        return data

    def _load_learning_data(self, user_id: str) -> AdaptiveLearningData:
        data = self.store.load_learning_data(user_id) if self.store is not None else None
        return data or AdaptiveLearningData(user_id=user_id, stability_period=self.config.stability_period)

    def adapt(self, user_id: str, metrics: SwingMetrics, was_correct: bool) -> Optional[SwingCalibration]:
        """Nudge a user's calibration after a classified swing.

        A correct detection pulls the swing threshold and speed range toward
        the observed swing; a false positive raises the swing threshold and
        the confidence threshold.

        Returns:
            The updated calibration, or None when the user has none
        """
        calibration = self.get_calibration(user_id)
        if calibration is None:
            logger.warning("No calibration found for user %s, skipping adaptation", user_id)
            return None

        alpha = self._record_observation(user_id, was_correct).learning_rate
        updated = calibration.model_copy(deep=True)
        thresholds = updated.personalized_thresholds

        if was_correct:
            speed = metrics.max_speed
            if speed > updated.swing_threshold:
                updated.swing_threshold = (1 - alpha) * updated.swing_threshold + alpha * (speed * 0.8)
            speed_range = thresholds.speed_range
            if speed < speed_range.min:
                speed_range.min = (1 - alpha) * speed_range.min + alpha * speed
            if speed > speed_range.max:
                speed_range.max = (1 - alpha) * speed_range.max + alpha * speed
        else:
            updated.swing_threshold *= 1 + alpha * 0.1
            thresholds.confidence_threshold = min(MAX_CONFIDENCE_THRESHOLD, thresholds.confidence_threshold + 2)

        updated.updated_at = datetime.now()
        self._set_calibration(updated)
        logger.info("Adapted calibration for %s (correct=%s): threshold=%.3f confidence=%.0f",
                    user_id, was_correct, updated.swing_threshold, thresholds.confidence_threshold)
        return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_calibration(self, user_id: str) -> Optional[SwingCalibration]:
        with self._registry_lock:
            calibration = self._calibrations.get(user_id)
        if calibration is None and self.store is not None:
            calibration = self.store.load_calibration(user_id)
            if calibration is not None:
                with self._registry_lock:
                    self._calibrations[user_id] = calibration
        return calibration

    def _set_calibration(self, calibration: SwingCalibration):
        with self._registry_lock:
            self._calibrations[calibration.user_id] = calibration
        if self.store is not None:
            self.store.save_calibration(calibration)
        self._publish("calibration_updated", calibration.user_id, calibration.model_dump(mode="json"))

    def learning_stats(self, user_id: str) -> Optional[AdaptiveLearningData]:
        with self._registry_lock:
            data = self._learning_data.get(user_id)
        if data is None and self.store is not None:
            data = self.store.load_learning_data(user_id)
            if data is not None:
                with self._registry_lock:
                    self._learning_data[user_id] = data
        return data

    def progress(self, user_id: str) -> Optional[CalibrationProgress]:
        session = self.get_session(user_id)
        if session is None:
            return None

        target = self.config.target_calibration_swings
        collected = len(session.swings)
        confirmed = [s for s in session.swings if s.confirmed]
        clubs = sorted({s.club_type for s in confirmed})

        data = self.learning_stats(user_id)
        improvement = (data.accuracy - 0.5) * 100 if data and data.accuracy else 0

        steps = []
        if len(confirmed) < self.config.min_confirmed_swings:
            steps.append("Take more practice swings and confirm valid swings")
        if len(clubs) < 2:
            steps.append("Try swings with different club types")
        if collected < target:
            steps.append(f"Take {target - collected} more swings for better calibration")

        return CalibrationProgress(
            swings_collected=collected,
            target_swings=target,
            clubs_calibrated=clubs,
            accuracy_improvement=round(improvement),
            recommended_next_steps=steps,
        )

    def reset_user(self, user_id: str):
        """Forget a user's calibration and learning data"""
        with self._registry_lock:
            self._calibrations.pop(user_id, None)
            self._learning_data.pop(user_id, None)
        if self.store is not None:
            self.store.delete_user(user_id)
        logger.info("Calibration reset for user %s", user_id)

    def _save_session(self, session: CalibrationSession):
        if self.store is not None:
            self.store.save_session(session)

    def _publish(self, event_type: str, user_id: str, data: dict):
        if self.event_bus is not None:
            self.event_bus.publish(SwingEvent(event_type=event_type, user_id=user_id, data=data))
