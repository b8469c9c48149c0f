"""
Feature extraction for segmented swings
"""
import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .config import settings as default_settings, Settings
from .models import (
    MotionSample, SwingPhase, PhaseName, SwingMetrics, DetailedSwingMetrics,
    PlaneDeviation, RotationalMetrics, LinearMetrics, SwingEfficiencyMetrics,
    EfficiencyRecommendation, find_phase
)

logger = logging.getLogger(__name__)

GRAVITY = 9.81                 # m/s²
IMPACT_MASS_KG = 0.5           # club + hands approximation
CLUBHEAD_SPEED_FACTOR = 4.5    # m/s² peak -> mph
IDEAL_TEMPO = 3.0


def _accel(samples: Sequence[MotionSample]) -> np.ndarray:
    """(n, 3) linear acceleration array"""
    if not samples:
        return np.zeros((0, 3))
    return np.array([[s.ax, s.ay, s.az] for s in samples], dtype=float)


def _gyro(samples: Sequence[MotionSample]) -> np.ndarray:
    """(n, 3) rotation rate array"""
    if not samples:
        return np.zeros((0, 3))
    return np.array([[s.gx, s.gy, s.gz] for s in samples], dtype=float)


def _speeds(samples: Sequence[MotionSample]) -> np.ndarray:
    return np.linalg.norm(_accel(samples), axis=1)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def phase_samples(samples: Sequence[MotionSample], phase: Optional[SwingPhase]) -> List[MotionSample]:
    """Samples with phase.start_time <= t <= phase.end_time"""
    if phase is None:
        return []
    return [s for s in samples if phase.start_time <= s.timestamp <= phase.end_time]


def phase_duration(phases: Sequence[SwingPhase], name: PhaseName) -> float:
    phase = find_phase(list(phases), name)
    return phase.duration if phase else 0.0


class MetricsEngine:
    """Computes basic, detailed and efficiency metrics. Every method is a pure function of its inputs."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    # -------------------------------------------------------------------------
    # Basic metrics (emitted by the segmenter when a swing closes)
    # -------------------------------------------------------------------------

    def compute_basic(self, samples: Sequence[MotionSample], phases: Sequence[SwingPhase]) -> SwingMetrics:
        speeds = _speeds(samples)
        max_speed = float(speeds.max()) if speeds.size else 0.0

        backswing = find_phase(list(phases), PhaseName.BACKSWING)
        downswing = find_phase(list(phases), PhaseName.DOWNSWING)
        impact = find_phase(list(phases), PhaseName.IMPACT)
        followthrough = find_phase(list(phases), PhaseName.FOLLOWTHROUGH)

        backswing_ms = backswing.duration if backswing and backswing.duration > 0 else 1.0
        downswing_ms = downswing.duration if downswing and downswing.duration > 0 else 1.0
        tempo = backswing_ms / downswing_ms

        impact_timing = impact.start_time - backswing.start_time if impact and backswing else 0.0

        accel = _accel(samples)
        if accel.size:
            xz = float(np.sum(np.abs(accel[:, 0]) + np.abs(accel[:, 2])))
            yz = float(np.sum(np.abs(accel[:, 1]) + np.abs(accel[:, 2])))
            swing_plane = min(90.0, math.degrees(math.atan(xz / (yz + 0.1))))
        else:
            swing_plane = 0.0

        clubhead_speed = round(max_speed * CLUBHEAD_SPEED_FACTOR * _clamp(IDEAL_TEMPO / tempo, 0.8, 1.2))

        return SwingMetrics(
            max_speed=max_speed,
            backswing_angle=self._rotation_angle(samples, backswing),
            downswing_angle=self._rotation_angle(samples, downswing),
            impact_timing=impact_timing,
            follow_through_angle=self._rotation_angle(samples, followthrough),
            swing_tempo=tempo,
            swing_plane=swing_plane,
            clubhead_speed=clubhead_speed,
        )

    def _rotation_angle(self, samples: Sequence[MotionSample], phase: Optional[SwingPhase]) -> float:
        """Mean |gyro Y| over the phase times its duration, capped at 180 degrees"""
        data = phase_samples(samples, phase)
        if not data:
            return 0.0
        mean_rate = float(np.mean(np.abs(_gyro(data)[:, 1])))
        return min(180.0, mean_rate * phase.duration / 1000.0)

    def score_confidence(self, metrics: SwingMetrics, phases: Sequence[SwingPhase],
                         expected_tempo: Optional[float] = None) -> float:
        """0-100 detection confidence for a closed swing"""
        expected_tempo = expected_tempo if expected_tempo is not None else self.config.default_expected_tempo
        present = {p.phase for p in phases}
        key_phases = (PhaseName.BACKSWING, PhaseName.DOWNSWING, PhaseName.IMPACT)
        confidence = 40.0 * sum(1 for name in key_phases if name in present) / len(key_phases)

        # Acceleration signature and tempo
        if metrics.max_speed > self.config.impact_threshold:
            confidence += 20
        elif metrics.max_speed > self.config.downswing_signature_threshold:
            confidence += 10
        if 1.5 < metrics.swing_tempo < 5:
            confidence += 10

        # Rotation and follow-through
        if 30 < metrics.backswing_angle < 120:
            confidence += 10
        if metrics.follow_through_angle > 20:
            confidence += 10
        if 20 < metrics.clubhead_speed < 150:
            confidence += 10

        if abs(metrics.swing_tempo - expected_tempo) > 2:
            confidence *= 0.9

        return round(_clamp(confidence, 0, 100))

    # -------------------------------------------------------------------------
    # Detailed metrics
    # -------------------------------------------------------------------------

    def compute_detailed(self, samples: Sequence[MotionSample], phases: Sequence[SwingPhase],
                         basic: SwingMetrics) -> DetailedSwingMetrics:
        """Derive the full feature set from raw samples, phases and basic metrics.

        Args:
            samples: Motion samples covering the swing
            phases: Phases of the swing, in order
            basic: Basic metrics produced at swing close

        Returns:
            DetailedSwingMetrics; empty inputs give neutral values
        """
        phases = list(phases)
        speeds = _speeds(samples)

        detailed = DetailedSwingMetrics(
            **{name: getattr(basic, name) for name in SwingMetrics.model_fields},
            address_duration=phase_duration(phases, PhaseName.ADDRESS),
            backswing_duration=phase_duration(phases, PhaseName.BACKSWING),
            transition_duration=phase_duration(phases, PhaseName.TRANSITION),
            downswing_duration=phase_duration(phases, PhaseName.DOWNSWING),
            follow_through_duration=phase_duration(phases, PhaseName.FOLLOWTHROUGH),
            backswing_speed=self._average_speed(phase_samples(samples, find_phase(phases, PhaseName.BACKSWING))),
            downswing_speed=self._average_speed(phase_samples(samples, find_phase(phases, PhaseName.DOWNSWING))),
            speed_acceleration=float(np.max(np.abs(np.diff(speeds)))) if speeds.size > 1 else 0.0,
            peak_speed_timing=float(np.argmax(speeds)) / speeds.size * 100 if speeds.size else 0.0,
            swing_consistency=self._motion_smoothness(speeds),
            path_deviation=self._path_deviation(samples, phases),
            face_angle_at_impact=self._face_angle(samples, phases),
            attack_angle=self._attack_angle(samples, phases),
            power_transfer=self._power_transfer(samples, phases),
            energy_generation=self._energy_generation(samples),
            impact_force=self._impact_force(samples, phases),
            balance_score=self._balance_score(samples),
            control_factor=(self._motion_smoothness(speeds) + self._tempo_consistency(phases)) / 2,
            rhythm_score=self._rhythm_score(phases),
            swing_plane_deviations=self._plane_deviations(samples, phases),
            rotational_velocity=self._rotational_metrics(samples),
            linear_acceleration=self._linear_metrics(samples),
        )

        logger.debug("Detailed metrics: power_transfer=%.1f balance=%.1f consistency=%.1f",
                     detailed.power_transfer, detailed.balance_score, detailed.swing_consistency)
        return detailed

    @staticmethod
    def _average_speed(data: Sequence[MotionSample]) -> float:
        speeds = _speeds(data)
        return float(speeds.mean()) if speeds.size else 0.0

    @staticmethod
    def _motion_smoothness(speeds: np.ndarray) -> float:
        if speeds.size < 2:
            return 100.0
        mean_delta = float(np.mean(np.abs(np.diff(speeds))))
        return _clamp(100 - mean_delta * 10, 0, 100)

    @staticmethod
    def _mean_y_delta(data: Sequence[MotionSample]) -> float:
        accel = _accel(data)
        if accel.shape[0] < 2:
            return 0.0
        return float(np.mean(np.abs(np.diff(accel[:, 1]))))

    def _path_deviation(self, samples: Sequence[MotionSample], phases: List[SwingPhase]) -> float:
        """Secondary-axis wobble local to the downswing and impact"""
        windows = [p for p in phases if p.phase in (PhaseName.DOWNSWING, PhaseName.IMPACT)]
        local = [s for s in samples if any(p.start_time <= s.timestamp <= p.end_time for p in windows)]
        if len(local) < 2:
            local = list(samples)
        return min(45.0, 5 * self._mean_y_delta(local))

    @staticmethod
    def _face_angle(samples: Sequence[MotionSample], phases: List[SwingPhase]) -> float:
        impact_data = phase_samples(samples, find_phase(phases, PhaseName.IMPACT))
        if not impact_data:
            return 0.0
        return _clamp(impact_data[0].gy / 10, -20, 20)

    @staticmethod
    def _attack_angle(samples: Sequence[MotionSample], phases: List[SwingPhase]) -> float:
        data = phase_samples(samples, find_phase(phases, PhaseName.DOWNSWING))
        if len(data) < 2:
            return 0.0
        angle = math.degrees(math.atan((data[-1].az - data[0].az) / len(data)))
        return _clamp(angle, -10, 5)

    @staticmethod
    def _phase_energy(samples: Sequence[MotionSample], phase: SwingPhase) -> float:
        speeds = _speeds(phase_samples(samples, phase))
        return float(np.sum(0.5 * speeds ** 2))

    def _power_transfer(self, samples: Sequence[MotionSample], phases: List[SwingPhase]) -> float:
        backswing = find_phase(phases, PhaseName.BACKSWING)
        impact = find_phase(phases, PhaseName.IMPACT)
        if backswing is None or impact is None:
            return 50.0
        backswing_energy = self._phase_energy(samples, backswing)
        if backswing_energy == 0:
            return 50.0
        return _clamp(100 * self._phase_energy(samples, impact) / backswing_energy, 0, 100)

    @staticmethod
    def _energy_generation(samples: Sequence[MotionSample]) -> float:
        linear = np.sum(0.5 * _speeds(samples) ** 2)
        rotational = np.sum(0.5 * np.linalg.norm(_gyro(samples), axis=1) ** 2)
        return float(linear + rotational)

    @staticmethod
    def _impact_force(samples: Sequence[MotionSample], phases: List[SwingPhase]) -> float:
        speeds = _speeds(phase_samples(samples, find_phase(phases, PhaseName.IMPACT)))
        if not speeds.size:
            return 0.0
        return float(speeds.max()) * IMPACT_MASS_KG * GRAVITY

    @staticmethod
    def _balance_score(samples: Sequence[MotionSample]) -> float:
        accel = _accel(samples)
        if not accel.size:
            return 100.0
        deviation = np.linalg.norm(accel - accel.mean(axis=0), axis=1)
        return _clamp(100 - 5 * float(deviation.mean()), 0, 100)

    @staticmethod
    def _tempo_consistency(phases: List[SwingPhase]) -> float:
        if len(phases) < 2:
            return 100.0
        durations = np.array([p.duration for p in phases], dtype=float)
        mean = durations.mean()
        if mean == 0:
            return 100.0
        return _clamp(100 - float(durations.std() / mean) * 100, 0, 100)

    @staticmethod
    def _rhythm_score(phases: List[SwingPhase]) -> float:
        if len(phases) < 3:
            return 50.0
        durations = np.array([p.duration for p in phases], dtype=float)
        mean = durations.mean()
        if mean == 0:
            return 50.0
        variation = float(np.mean(np.abs(durations - mean)))
        return _clamp(100 - variation / mean * 100, 0, 100)

    def _plane_deviations(self, samples: Sequence[MotionSample], phases: List[SwingPhase]) -> List[PlaneDeviation]:
        deviations = []
        for phase in phases:
            if phase.phase not in (PhaseName.BACKSWING, PhaseName.DOWNSWING, PhaseName.FOLLOWTHROUGH):
                continue
            deviation = min(30.0, 3 * self._mean_y_delta(phase_samples(samples, phase)))
            if deviation > 15:
                severity = "major"
            elif deviation > 8:
                severity = "moderate"
            else:
                severity = "minor"
            deviations.append(PlaneDeviation(phase=phase.phase, deviation=deviation, severity=severity))
        return deviations

    def _rotational_metrics(self, samples: Sequence[MotionSample]) -> RotationalMetrics:
        gyro = _gyro(samples)
        rates = np.linalg.norm(gyro, axis=1)
        if not rates.size:
            return RotationalMetrics(max_rotation_rate=0.0, rotation_acceleration=0.0, axis_stability=100.0)

        rotation_acceleration = (
            float(np.max(np.abs(np.diff(rates)))) * self.config.sample_rate_hz if rates.size > 1 else 0.0
        )

        # Axis stability from unit rotation vectors
        moving = rates > 0
        if np.count_nonzero(moving) < 2:
            axis_stability = 100.0
        else:
            units = gyro[moving] / rates[moving][:, None]
            spread = np.linalg.norm(units - units.mean(axis=0), axis=1)
            axis_stability = _clamp(100 - 50 * float(spread.mean()), 0, 100)

        return RotationalMetrics(
            max_rotation_rate=float(rates.max()),
            rotation_acceleration=rotation_acceleration,
            axis_stability=axis_stability,
            hand_path=rates.tolist(),
        )

    @staticmethod
    def _linear_metrics(samples: Sequence[MotionSample]) -> LinearMetrics:
        accel = _accel(samples)
        return LinearMetrics(
            x_acceleration=accel[:, 0].tolist(),
            y_acceleration=accel[:, 1].tolist(),
            z_acceleration=accel[:, 2].tolist(),
            resultant_path=np.linalg.norm(accel, axis=1).tolist(),
        )

    # -------------------------------------------------------------------------
    # Efficiency
    # -------------------------------------------------------------------------

    def compute_efficiency(self, detailed: DetailedSwingMetrics) -> SwingEfficiencyMetrics:
        timing_efficiency = self._timing_efficiency(detailed)
        power_efficiency = min(100.0, detailed.power_transfer)
        control_efficiency = (detailed.balance_score + detailed.control_factor) / 2
        overall = (timing_efficiency + power_efficiency + control_efficiency) / 3

        recommendations = []
        if timing_efficiency < 70:
            recommendations.append(EfficiencyRecommendation(
                category="timing", severity="high",
                description="Swing timing needs improvement",
                improvement_potential=100 - timing_efficiency,
                specific_tips=["Focus on smooth transition", "Practice tempo drills",
                               "Work on timing consistency"]))
        if detailed.balance_score < 70:
            recommendations.append(EfficiencyRecommendation(
                category="balance", severity="medium",
                description="Balance throughout swing could be improved",
                improvement_potential=100 - detailed.balance_score,
                specific_tips=["Focus on stable base", "Practice balance drills", "Maintain spine angle"]))
        if detailed.power_transfer < 70:
            recommendations.append(EfficiencyRecommendation(
                category="power", severity="medium",
                description="Power transfer efficiency is below optimal",
                improvement_potential=100 - detailed.power_transfer,
                specific_tips=["Improve hip rotation", "Focus on sequential motion", "Work on kinetic chain"]))

        return SwingEfficiencyMetrics(
            overall_efficiency=round(overall),
            energy_waste=round(100 - detailed.power_transfer),
            timing_efficiency=round(timing_efficiency),
            mechanical_advantage=round(control_efficiency),
            recommendations=recommendations,
        )

    @staticmethod
    def _timing_efficiency(detailed: DetailedSwingMetrics) -> float:
        if detailed.backswing_duration == 0 or detailed.downswing_duration == 0:
            return 50.0
        tempo = detailed.backswing_duration / detailed.downswing_duration
        deviation = abs(tempo - IDEAL_TEMPO) / IDEAL_TEMPO
        return _clamp(100 - deviation * 50, 0, 100)
