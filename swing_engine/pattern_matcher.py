"""
Template-based swing pattern matching
"""
import logging
import math
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from .models import ClubType, MetricRange, MotionSample, SwingMetrics, SwingPhase, find_phase
from .templates import PhaseTemplate, SwingTemplate, TemplateLibrary

logger = logging.getLogger(__name__)

METRICS_WEIGHT = 0.6
PHASES_WEIGHT = 0.4
DEVIATION_THRESHOLD = 80


class PhaseMatchResult(BaseModel):
    phase: str
    match_percentage: int
    actual_value: float = Field(..., description="Actual phase duration (ms)")
    expected_value: float = Field(..., description="Template phase duration (ms)")
    within_tolerance: bool


class SwingDeviation(BaseModel):
    metric: str
    actual_value: float
    expected_value: float
    deviation: float
    severity: str  # "minor", "moderate", "major"
    impact: str


class PatternMatchResult(BaseModel):
    template_id: str
    template_name: str
    club_type: ClubType
    overall_match: int = Field(..., description="Overall match percentage (0-100)")
    phase_matches: List[PhaseMatchResult] = Field(default_factory=list)
    deviations: List[SwingDeviation] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def metric_match(actual: float, ideal: float, tolerance_range: MetricRange) -> float:
    """Score a metric against its acceptable range (100 at ideal, 80 at the range edge)"""
    low, high = tolerance_range.min, tolerance_range.max
    if low <= actual <= high:
        max_deviation = max(ideal - low, high - ideal)
        if max_deviation <= 0:
            return 100.0
        return max(80.0, 100 - abs(actual - ideal) / max_deviation * 20)

    excess = low - actual if actual < low else actual - high
    width = high - low
    penalty = min(1.0, excess / width) if width > 0 else 1.0
    return max(0.0, 80 - penalty * 80)


def timing_match(actual: float, ideal: float, tolerance: float) -> float:
    deviation = abs(actual - ideal)
    if deviation <= tolerance:
        return max(80.0, 100 - deviation / tolerance * 20) if tolerance > 0 else 100.0
    penalty = min(1.0, (deviation - tolerance) / tolerance) if tolerance > 0 else 1.0
    return max(0.0, 80 - penalty * 80)


def phase_value_match(actual: float, expected: float, tolerance: float) -> float:
    """Duration / acceleration score with an 85-point ceiling outside tolerance"""
    deviation = abs(actual - expected)
    if deviation <= tolerance:
        return max(85.0, 100 - deviation / tolerance * 15) if tolerance > 0 else 100.0
    penalty = min(1.0, (deviation - tolerance) / expected) if expected > 0 else 1.0
    return max(0.0, 85 - penalty * 85)


def _severity(score: float) -> str:
    if score < 50:
        return "major"
    if score < 70:
        return "moderate"
    return "minor"


CLUB_NOTES = {
    "driver": "For driver swings, focus on smooth tempo and full extension",
    "iron": "Iron swings require more control - focus on solid ball-first contact",
    "wedge": "Wedge shots need precise timing - practice your short game tempo",
}

# metric -> (advice when too low, advice when too high)
METRIC_ADVICE = {
    "Max Speed": ("Try to accelerate more through the downswing for increased power",
                  "Focus on control - you may be swinging too hard"),
    "Backswing Angle": ("Work on getting a fuller shoulder turn in your backswing",
                        "Your backswing may be too long - focus on a more compact swing"),
    "Swing Tempo": ("Slow down your backswing to improve timing and consistency",
                    "Try to accelerate more in your downswing relative to your backswing"),
    "Impact Timing": ("Work on your transition timing between backswing and downswing",
                      "Work on your transition timing between backswing and downswing"),
}


class PatternMatcher:
    """Scores swings against a library of club templates"""

    def __init__(self, library: Optional[TemplateLibrary] = None):
        self.library = library or TemplateLibrary()

    def available_templates(self) -> List[SwingTemplate]:
        return self.library.available()

    def get_template(self, template_id: str) -> Optional[SwingTemplate]:
        return self.library.get(template_id)

    def add_custom_template(self, template: SwingTemplate):
        self.library.add(template)

    def match(self, metrics: Optional[SwingMetrics], phases: Sequence[SwingPhase],
              samples: Sequence[MotionSample] = (), club_filter: Optional[ClubType] = None) -> List[PatternMatchResult]:
        """Compare a swing against every (optionally club-filtered) template.

        Args:
            metrics: Basic metrics of the swing
            phases: Segmented phases of the swing
            samples: Raw motion window (carried for callers; scoring uses metrics and phases)
            club_filter: Only score templates for this club type

        Returns:
            Results sorted best match first. An empty or malformed window
            produces a zero-score result per template instead of raising.
        """
        results = []
        for template in self.library.available(club_filter):
            try:
                result = self._compare(metrics, list(phases), template)
            except (ValueError, TypeError, AttributeError, ZeroDivisionError) as e:
                logger.warning("Pattern matching against %s failed: %s", template.template_id, e)
                result = self._lowest_result(template)
            results.append(result)

        results.sort(key=lambda r: r.overall_match, reverse=True)
        if results:
            logger.debug("Pattern analysis: %d templates, best %s (%d)",
                         len(results), results[0].template_name, results[0].overall_match)
        return results

    @staticmethod
    def _lowest_result(template: SwingTemplate) -> PatternMatchResult:
        return PatternMatchResult(
            template_id=template.template_id,
            template_name=template.name,
            club_type=template.club_type,
            overall_match=0,
            phase_matches=[
                PhaseMatchResult(phase=p.phase.value, match_percentage=0, actual_value=0,
                                 expected_value=p.expected_duration, within_tolerance=False)
                for p in template.phases
            ],
        )

    def _compare(self, metrics: Optional[SwingMetrics], phases: List[SwingPhase],
                 template: SwingTemplate) -> PatternMatchResult:
        if metrics is None or not phases:
            raise ValueError("empty swing window")
        values = [getattr(metrics, name) for name in SwingMetrics.model_fields]
        if not all(math.isfinite(v) for v in values):
            raise ValueError("non-finite swing metrics")

        deviations: List[SwingDeviation] = []
        metrics_score = self._compare_metrics(metrics, template, deviations)
        phase_matches: List[PhaseMatchResult] = []
        phase_score = self._compare_phases(phases, template.phases, phase_matches)

        overall = round(metrics_score * METRICS_WEIGHT + phase_score * PHASES_WEIGHT)

        return PatternMatchResult(
            template_id=template.template_id,
            template_name=template.name,
            club_type=template.club_type,
            overall_match=overall,
            phase_matches=phase_matches,
            deviations=deviations,
            recommendations=self._recommendations(deviations, template),
        )

    def _compare_metrics(self, actual: SwingMetrics, template: SwingTemplate,
                         deviations: List[SwingDeviation]) -> float:
        ideal = template.ideal_metrics
        tolerances = template.tolerances
        checks = [
            ("Max Speed", actual.max_speed, ideal.max_speed,
             metric_match(actual.max_speed, ideal.max_speed, tolerances.speed_range),
             "Affects swing power and clubhead speed"),
            ("Backswing Angle", actual.backswing_angle, ideal.backswing_angle,
             metric_match(actual.backswing_angle, ideal.backswing_angle, tolerances.backswing_angle_range),
             "Affects swing arc and power generation"),
            ("Swing Tempo", actual.swing_tempo, ideal.swing_tempo,
             metric_match(actual.swing_tempo, ideal.swing_tempo, tolerances.tempo_range),
             "Affects timing and consistency"),
            ("Impact Timing", actual.impact_timing, ideal.impact_timing,
             timing_match(actual.impact_timing, ideal.impact_timing, tolerances.timing_tolerance),
             "Affects ball striking and accuracy"),
        ]

        for metric, actual_value, expected_value, score, impact in checks:
            if score < DEVIATION_THRESHOLD:
                deviations.append(SwingDeviation(
                    metric=metric,
                    actual_value=actual_value,
                    expected_value=expected_value,
                    deviation=abs(actual_value - expected_value),
                    severity=_severity(score),
                    impact=impact,
                ))

        return sum(check[3] for check in checks) / len(checks)

    def _compare_phases(self, actual_phases: List[SwingPhase], template_phases: Sequence[PhaseTemplate],
                        phase_matches: List[PhaseMatchResult]) -> float:
        total = 0.0
        critical_total = 0.0
        critical_count = 0

        for expected in template_phases:
            actual = find_phase(actual_phases, expected.phase)
            if actual is None:
                phase_matches.append(PhaseMatchResult(
                    phase=expected.phase.value, match_percentage=0, actual_value=0,
                    expected_value=expected.expected_duration, within_tolerance=False))
                continue

            duration_score = phase_value_match(actual.duration, expected.expected_duration,
                                               expected.duration_tolerance)
            acceleration_score = 100.0
            if actual.peak_acceleration is not None:
                acceleration_score = phase_value_match(actual.peak_acceleration, expected.expected_acceleration,
                                                       expected.acceleration_tolerance)
            score = (duration_score + acceleration_score) / 2

            phase_matches.append(PhaseMatchResult(
                phase=expected.phase.value,
                match_percentage=round(score),
                actual_value=actual.duration,
                expected_value=expected.expected_duration,
                within_tolerance=abs(actual.duration - expected.expected_duration) <= expected.duration_tolerance,
            ))

            if expected.critical:
                critical_total += score
                critical_count += 1
            total += score

        # Critical phases count double; missing phases count once at zero
        regular_count = len(template_phases) - critical_count
        weighted_total = critical_total * 2 + (total - critical_total)
        weighted_max = (critical_count * 2 + regular_count) * 100
        return weighted_total / weighted_max * 100 if weighted_max > 0 else 0.0

    @staticmethod
    def _recommendations(deviations: List[SwingDeviation], template: SwingTemplate) -> List[str]:
        recommendations = []
        for deviation in deviations:
            too_low, too_high = METRIC_ADVICE[deviation.metric]
            recommendations.append(too_low if deviation.actual_value < deviation.expected_value else too_high)

        if any(d.severity == "major" for d in deviations) and template.club_type in CLUB_NOTES:
            recommendations.append(CLUB_NOTES[template.club_type])
        return recommendations
