"""
Contextual and statistical validation of detected swings
"""
import logging
import threading
from collections import deque
from typing import Callable, List, Literal, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field

from .config import settings as default_settings, Settings
from .models import CompletedSwing, MotionSample
from .pattern_matcher import PatternMatchResult
from global_config import (
    VALIDATION_HISTORY_MIN_CONFIDENCE, VALIDATION_CONSISTENCY_WINDOW, VALID_CONFIDENCE_THRESHOLD,
    VALID_RISK_THRESHOLD, FALSE_POSITIVE_MATCH_THRESHOLD
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Context supplied per validation call
# -----------------------------------------------------------------------------

class ActivityLevel(BaseModel):
    walking_detected: bool = False
    driving_detected: bool = False
    static_period: float = Field(0.0, description="Seconds of static positioning before the swing")
    average_motion: float = Field(0.0, description="Average motion level in the past minute")


class DeviceStability(BaseModel):
    accelerometer_variance: float = 0.0
    gyroscope_variance: float = 0.0
    temperature_drift: float = 0.0
    signal_quality: float = Field(100.0, description="Link signal quality (0-100)")


class EnvironmentalFactors(BaseModel):
    wind_level: float = Field(0.0, description="Estimated wind level (0-10)")
    ground_stability: float = Field(100.0, description="Ground stability estimate (0-100)")
    course_type: Literal["practice", "course", "simulator", "unknown"] = "unknown"


class ValidationContext(BaseModel):
    is_round_active: bool
    time_of_day: int = Field(..., ge=0, le=23, description="Hour of day")
    recent_activity: ActivityLevel = Field(default_factory=ActivityLevel)
    device_stability: DeviceStability = Field(default_factory=DeviceStability)
    environmental_factors: EnvironmentalFactors = Field(default_factory=EnvironmentalFactors)


# -----------------------------------------------------------------------------
# False-positive signatures
# -----------------------------------------------------------------------------

class AccelerationPattern(BaseModel):
    average_magnitude: float
    peak_count: int
    smoothness: float
    direction_consistency: float


class FrequencyCharacteristics(BaseModel):
    dominant_frequency: float = Field(..., description="Hz")
    harmonics: List[float] = Field(default_factory=list)
    noise_level: float = 0.0


class PeriodicityPattern(BaseModel):
    is_repeating: bool = False
    repeat_interval: float = 0.0
    repeat_consistency: float = 0.0


class MotionCharacteristics(BaseModel):
    duration_range: Tuple[float, float] = Field(..., description="Duration range (ms)")
    acceleration_pattern: AccelerationPattern
    frequency_domain: FrequencyCharacteristics
    periodicity: PeriodicityPattern = Field(default_factory=PeriodicityPattern)


class FalsePositivePattern(BaseModel):
    pattern_id: str
    name: str
    description: str
    characteristics: MotionCharacteristics
    confidence_penalty: float


def _signature(pattern_id, name, description, duration, magnitude, peaks, smoothness, direction,
               frequency, harmonics, noise, penalty, repeating=False, interval=0.0, consistency=0.0):
    return FalsePositivePattern(
        pattern_id=pattern_id,
        name=name,
        description=description,
        characteristics=MotionCharacteristics(
            duration_range=duration,
            acceleration_pattern=AccelerationPattern(average_magnitude=magnitude, peak_count=peaks,
                                                     smoothness=smoothness, direction_consistency=direction),
            frequency_domain=FrequencyCharacteristics(dominant_frequency=frequency, harmonics=harmonics,
                                                      noise_level=noise),
            periodicity=PeriodicityPattern(is_repeating=repeating, repeat_interval=interval,
                                           repeat_consistency=consistency),
        ),
        confidence_penalty=penalty,
    )


FALSE_POSITIVE_PATTERNS = (
    _signature("walking", "Walking Motion", "regular walking steps that could be mistaken for swings",
               (400, 800), 3.0, 2, 85, 90, 2.0, [1.0, 2.0, 4.0], 0.2, 40,
               repeating=True, interval=500, consistency=85),
    _signature("car_door", "Car Door Closing", "sharp impact from closing car doors or trunks",
               (100, 300), 8.0, 1, 20, 95, 15.0, [15.0, 30.0], 0.5, 50),
    _signature("practice_swing", "Practice Swing",
               "practice swings without ball contact (less deceleration at impact)",
               (800, 1500), 6.0, 2, 75, 80, 1.5, [1.5, 3.0], 0.3, 20),
    _signature("putting", "Putting Stroke", "putting strokes, which differ from full swings",
               (200, 600), 2.0, 1, 90, 95, 0.8, [0.8], 0.1, 30),
)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

class ValidationFactor(BaseModel):
    factor: str
    impact: Literal["positive", "negative", "neutral"]
    weight: float = Field(..., ge=0, le=1)
    description: str


class ValidationResult(BaseModel):
    is_valid: bool
    adjusted_confidence: int = Field(..., ge=0, le=100)
    false_positive_risk: int = Field(..., ge=0, le=100)
    factors: List[ValidationFactor] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ValidationStats(BaseModel):
    total_validations: int
    average_confidence: int
    false_positive_rate: int


class StepOutcome(BaseModel):
    """Effect of one validation step"""
    factors: List[ValidationFactor] = Field(default_factory=list)
    multiplier: float = 1.0
    penalty: float = 0.0
    risk: float = 0.0


def _magnitudes(samples: List[MotionSample]) -> np.ndarray:
    return np.array([s.acceleration_magnitude for s in samples], dtype=float)


class SwingValidator:
    """Five-step validator adjusting detection confidence and false-positive risk"""

    def __init__(self, config: Optional[Settings] = None,
                 patterns: Optional[List[FalsePositivePattern]] = None):
        self.config = config or default_settings
        self.patterns = list(patterns if patterns is not None else FALSE_POSITIVE_PATTERNS)
        self._history = deque(maxlen=self.config.validation_history_size)
        self._lock = threading.Lock()

    def validate(self, swing: CompletedSwing, context: ValidationContext,
                 pattern_match: Optional[PatternMatchResult] = None) -> ValidationResult:
        """Validate a detected swing against its context.

        Args:
            swing: Swing emitted by the segmenter
            context: Round, activity and device signals at detection time
            pattern_match: Best template match, if one was computed

        Returns:
            ValidationResult with confidence and risk clamped to [0, 100]
        """
        confidence = float(swing.confidence)
        risk = 0.0
        factors: List[ValidationFactor] = []

        steps: List[Tuple[str, Callable[[], StepOutcome]]] = [
            ("context", lambda: self._check_context(context)),
            ("false_positive", lambda: self._check_false_positives(swing)),
            ("history", lambda: self._check_history(swing)),
        ]
        if pattern_match is not None:
            steps.append(("pattern_match", lambda: self._check_pattern_match(pattern_match)))
        steps.append(("device_stability", lambda: self._check_device_stability(context.device_stability)))

        for name, step in steps:
            try:
                outcome = step()
            except Exception as e:
                logger.warning("Validation step '%s' failed, treating as neutral: %s", name, e)
                continue
            factors.extend(outcome.factors)
            confidence = confidence * outcome.multiplier - outcome.penalty
            risk += outcome.risk

        # Thresholds apply to the clamped values; rounding is for reporting only
        confidence = max(0.0, min(100.0, confidence))
        risk = max(0.0, min(100.0, risk))

        if confidence > VALIDATION_HISTORY_MIN_CONFIDENCE:
            with self._lock:
                self._history.append(swing.confidence)

        is_valid = confidence > VALID_CONFIDENCE_THRESHOLD and risk < VALID_RISK_THRESHOLD
        logger.info("Validation complete: original=%.0f adjusted=%.0f risk=%.0f valid=%s",
                    swing.confidence, confidence, risk, is_valid)

        return ValidationResult(
            is_valid=is_valid,
            adjusted_confidence=round(confidence),
            false_positive_risk=round(risk),
            factors=factors,
            recommendations=self._recommendations(factors),
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _check_context(self, context: ValidationContext) -> StepOutcome:
        outcome = StepOutcome()

        if not context.is_round_active:
            outcome.factors.append(ValidationFactor(
                factor="Round Status", impact="negative", weight=0.3,
                description="No active golf round detected - increases false positive risk"))
            outcome.multiplier *= 0.7
            outcome.risk += 25
        else:
            outcome.factors.append(ValidationFactor(
                factor="Round Status", impact="positive", weight=0.2,
                description="Active golf round provides context for swing detection"))

        activity = context.recent_activity
        if activity.walking_detected:
            outcome.factors.append(ValidationFactor(
                factor="Walking Activity", impact="negative", weight=0.2,
                description="Recent walking activity may cause false positives"))
            outcome.multiplier *= 0.85
            outcome.risk += 15
        if activity.driving_detected:
            outcome.factors.append(ValidationFactor(
                factor="Driving Activity", impact="negative", weight=0.3,
                description="Driving activity strongly suggests false positive"))
            outcome.multiplier *= 0.6
            outcome.risk += 35

        if activity.static_period > 5:
            outcome.factors.append(ValidationFactor(
                factor="Pre-swing Stability", impact="positive", weight=0.2,
                description="Good pre-swing stability increases confidence"))
            outcome.multiplier *= 1.1
        else:
            outcome.factors.append(ValidationFactor(
                factor="Pre-swing Stability", impact="negative", weight=0.1,
                description="Limited pre-swing stability period"))
            outcome.risk += 10

        if 6 <= context.time_of_day <= 18:
            outcome.factors.append(ValidationFactor(
                factor="Time of Day", impact="positive", weight=0.1, description="Typical golf playing hours"))
        else:
            outcome.factors.append(ValidationFactor(
                factor="Time of Day", impact="negative", weight=0.1,
                description="Unusual time for golf - may indicate false positive"))
            outcome.risk += 5

        return outcome

    def _check_false_positives(self, swing: CompletedSwing) -> StepOutcome:
        outcome = StepOutcome()
        for pattern in self.patterns:
            strength = self.match_strength(swing, pattern)
            if strength <= FALSE_POSITIVE_MATCH_THRESHOLD:
                continue
            penalty = pattern.confidence_penalty * strength
            outcome.factors.append(ValidationFactor(
                factor=f"False Positive: {pattern.name}", impact="negative", weight=min(1.0, strength),
                description=f"Motion matches {pattern.description}"))
            outcome.penalty += penalty
            outcome.risk += penalty * 0.8
            logger.info("False positive pattern detected: %s (strength=%.2f, penalty=%.1f)",
                        pattern.name, strength, penalty)
        return outcome

    def match_strength(self, swing: CompletedSwing, pattern: FalsePositivePattern) -> float:
        """Weighted 0-1 similarity: 30% duration, 40% acceleration, 30% frequency"""
        characteristics = pattern.characteristics
        score = 0.0

        low, high = characteristics.duration_range
        if low <= swing.duration <= high:
            score += 0.3

        if swing.metrics is not None:
            score += 0.4 * self._acceleration_similarity(swing.samples, characteristics.acceleration_pattern)

        score += 0.3 * self._frequency_similarity(swing.samples, characteristics.frequency_domain)
        return score

    @staticmethod
    def _acceleration_similarity(samples: List[MotionSample], pattern: AccelerationPattern) -> float:
        if not samples:
            return 0.0
        average = float(_magnitudes(samples).mean())
        expected = pattern.average_magnitude
        return min(1.0, max(0.0, 1 - abs(average - expected) / expected))

    @staticmethod
    def _frequency_similarity(samples: List[MotionSample], pattern: FrequencyCharacteristics) -> float:
        if len(samples) < 10:
            return 0.0
        magnitudes = _magnitudes(samples)
        centered = magnitudes - magnitudes.mean()
        zero_crossings = int(np.count_nonzero(centered[1:] * centered[:-1] < 0))

        duration_s = (samples[-1].timestamp - samples[0].timestamp) / 1000
        if duration_s <= 0:
            return 0.0
        frequency = zero_crossings / (2 * duration_s)
        expected = pattern.dominant_frequency
        return min(1.0, max(0.0, 1 - abs(frequency - expected) / expected))

    def _check_history(self, swing: CompletedSwing) -> StepOutcome:
        with self._lock:
            recent = list(self._history)[-VALIDATION_CONSISTENCY_WINDOW:]

        if not recent:
            return StepOutcome(factors=[ValidationFactor(
                factor="Historical Data", impact="neutral", weight=0.1,
                description="No historical swing data available for comparison")])

        average = sum(recent) / len(recent)
        if swing.confidence > average * 1.5:
            return StepOutcome(multiplier=0.9, risk=10, factors=[ValidationFactor(
                factor="Historical Consistency", impact="negative", weight=0.2,
                description="Swing confidence unusually high compared to recent history")])
        if swing.confidence < average * 0.5:
            return StepOutcome(multiplier=0.95, risk=5, factors=[ValidationFactor(
                factor="Historical Consistency", impact="negative", weight=0.1,
                description="Swing confidence unusually low compared to recent history")])
        return StepOutcome(factors=[ValidationFactor(
            factor="Historical Consistency", impact="positive", weight=0.1,
            description="Swing confidence consistent with recent history")])

    @staticmethod
    def _check_pattern_match(pattern_match: PatternMatchResult) -> StepOutcome:
        if pattern_match.overall_match > 80:
            return StepOutcome(multiplier=1.2, factors=[ValidationFactor(
                factor="Pattern Match Quality", impact="positive", weight=0.3,
                description=f"Excellent match with {pattern_match.template_name} ({pattern_match.overall_match}%)")])
        if pattern_match.overall_match < 50:
            return StepOutcome(multiplier=0.8, risk=15, factors=[ValidationFactor(
                factor="Pattern Match Quality", impact="negative", weight=0.2,
                description=f"Poor match with {pattern_match.template_name} ({pattern_match.overall_match}%)")])
        return StepOutcome()

    @staticmethod
    def _check_device_stability(stability: DeviceStability) -> StepOutcome:
        outcome = StepOutcome()
        if stability.signal_quality < 70:
            outcome.factors.append(ValidationFactor(
                factor="Signal Quality", impact="negative", weight=0.2,
                description=f"Low signal quality ({stability.signal_quality:.0f}%)"))
            outcome.multiplier *= 0.85
            outcome.risk += 15
        if stability.accelerometer_variance > 2.0:
            outcome.factors.append(ValidationFactor(
                factor="Sensor Stability", impact="negative", weight=0.1,
                description="High accelerometer variance may affect accuracy"))
            outcome.multiplier *= 0.9
            outcome.risk += 10
        return outcome

    @staticmethod
    def _recommendations(factors: List[ValidationFactor]) -> List[str]:
        negative = [f.factor for f in factors if f.impact == "negative"]
        recommendations = []
        if any("Round Status" in f for f in negative):
            recommendations.append("Start a golf round for more accurate swing detection")
        if any("Walking" in f or "Driving" in f for f in negative):
            recommendations.append("Ensure device is stable before swinging")
        if any("Signal Quality" in f for f in negative):
            recommendations.append("Check Bluetooth connection and move closer to device")
        if any("False Positive" in f for f in negative):
            recommendations.append("Consider manual confirmation for swing detection")
        return recommendations

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    @property
    def history(self) -> List[float]:
        with self._lock:
            return list(self._history)

    def stats(self) -> ValidationStats:
        history = self.history
        total = len(history)
        average = sum(history) / total if total else 0
        low_confidence = sum(1 for c in history if c < 40)
        return ValidationStats(
            total_validations=total,
            average_confidence=round(average),
            false_positive_rate=round(low_confidence / total * 100) if total else 0,
        )

    def clear_history(self):
        with self._lock:
            self._history.clear()
        logger.info("Validation history cleared")
