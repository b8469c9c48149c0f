"""
Data models for the swing engine
"""
import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Literal, Union, Annotated

from pydantic import BaseModel, Field, TypeAdapter, model_validator


ClubType = Literal["driver", "iron", "wedge", "putter"]


class MotionSample(BaseModel):
    """Single accelerometer + gyroscope reading"""
    timestamp: float = Field(..., description="Monotonic timestamp (ms)")
    ax: float = Field(..., description="Linear acceleration X, gravity removed (m/s²)")
    ay: float = Field(..., description="Linear acceleration Y, gravity removed (m/s²)")
    az: float = Field(..., description="Linear acceleration Z, gravity removed (m/s²)")
    gx: float = Field(0.0, description="Rotation rate X (deg/s)")
    gy: float = Field(0.0, description="Rotation rate Y (deg/s)")
    gz: float = Field(0.0, description="Rotation rate Z (deg/s)")

    @property
    def acceleration_magnitude(self) -> float:
        return math.sqrt(self.ax**2 + self.ay**2 + self.az**2)

    @property
    def rotation_magnitude(self) -> float:
        return math.sqrt(self.gx**2 + self.gy**2 + self.gz**2)

    def is_finite(self) -> bool:
        """True when every numeric field is a finite number"""
        return all(math.isfinite(value) for value in (
            self.timestamp, self.ax, self.ay, self.az, self.gx, self.gy, self.gz
        ))


# -----------------------------------------------------------------------------
# Sensor payloads
# -----------------------------------------------------------------------------

class AxisReading(BaseModel):
    """Three-axis reading as sent by a device"""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class WearableReading(BaseModel):
    """Payload from a wrist-worn wearable (gyroscope optional on some models)"""
    source: Literal["wearable"] = "wearable"
    timestamp: float
    accelerometer: AxisReading
    gyroscope: Optional[AxisReading] = None

    def to_sample(self) -> MotionSample:
        gyro = self.gyroscope or AxisReading()
        return MotionSample(
            timestamp=self.timestamp,
            ax=self.accelerometer.x, ay=self.accelerometer.y, az=self.accelerometer.z,
            gx=gyro.x, gy=gyro.y, gz=gyro.z
        )


class HandheldReading(BaseModel):
    """Payload from a handheld device's motion sensors"""
    source: Literal["handheld"] = "handheld"
    timestamp: float
    acceleration: AxisReading
    gyroscope: AxisReading
    magnetometer: Optional[AxisReading] = None

    def to_sample(self) -> MotionSample:
        return MotionSample(
            timestamp=self.timestamp,
            ax=self.acceleration.x, ay=self.acceleration.y, az=self.acceleration.z,
            gx=self.gyroscope.x, gy=self.gyroscope.y, gz=self.gyroscope.z
        )


SensorPayload = Annotated[Union[WearableReading, HandheldReading], Field(discriminator="source")]

_payload_adapter = TypeAdapter(SensorPayload)


def parse_payload(data: Dict[str, Any]) -> Union[WearableReading, HandheldReading]:
    """Resolve a raw device dict into its payload variant.

    Raises:
        pydantic.ValidationError: if the dict matches no known source
    """
    return _payload_adapter.validate_python(data)


# -----------------------------------------------------------------------------
# Swing structure
# -----------------------------------------------------------------------------

class PhaseName(str, Enum):
    ADDRESS = "address"
    BACKSWING = "backswing"
    TRANSITION = "transition"
    DOWNSWING = "downswing"
    IMPACT = "impact"
    FOLLOWTHROUGH = "followthrough"


class SwingPhase(BaseModel):
    """Labelled time segment of a single swing"""
    phase: PhaseName
    start_time: float = Field(..., description="Phase start (ms)")
    end_time: float = Field(..., description="Phase end (ms)")
    peak_acceleration: Optional[float] = Field(None, description="Peak acceleration magnitude in phase (m/s²)")
    peak_angular_velocity: Optional[float] = Field(None, description="Peak rotation rate in phase (deg/s)")

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.end_time < self.start_time:
            raise ValueError(
                f"SwingPhase '{self.phase.value}': end_time ({self.end_time}) < start_time ({self.start_time})"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


def find_phase(phases: List[SwingPhase], name: PhaseName) -> Optional[SwingPhase]:
    """First phase with the given tag, if any"""
    for phase in phases:
        if phase.phase == name:
            return phase
    return None


class MetricRange(BaseModel):
    """Closed [min, max] interval"""
    min: float
    max: float

    @model_validator(mode="after")
    def _check_order(self):
        if self.min > self.max:
            raise ValueError(f"MetricRange min ({self.min}) > max ({self.max})")
        return self

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class SwingMetrics(BaseModel):
    """Basic per-swing feature vector"""
    max_speed: float = Field(..., description="Peak acceleration magnitude (m/s²)")
    backswing_angle: float = Field(..., description="Backswing rotation (degrees)")
    downswing_angle: float = Field(..., description="Downswing rotation (degrees)")
    impact_timing: float = Field(..., description="Backswing start to impact (ms)")
    follow_through_angle: float = Field(..., description="Follow-through rotation (degrees)")
    swing_tempo: float = Field(..., description="Backswing duration / downswing duration")
    swing_plane: float = Field(..., description="Swing plane angle from vertical (degrees)")
    clubhead_speed: float = Field(..., description="Estimated clubhead speed (mph)")


class CompletedSwing(BaseModel):
    """Swing closed by the segmenter, with its detection confidence"""
    swing_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_swing: bool = Field(..., description="Confidence cleared the detection minimum")
    confidence: float = Field(..., description="Detection confidence (0-100)")
    metrics: Optional[SwingMetrics] = None
    phases: List[SwingPhase] = Field(default_factory=list)
    samples: List[MotionSample] = Field(default_factory=list)
    club_type: Optional[ClubType] = None
    detected_at: datetime = Field(default_factory=datetime.now)

    @property
    def duration(self) -> float:
        """Time from first phase start to last phase end (ms)"""
        if not self.phases:
            return 0.0
        return self.phases[-1].end_time - self.phases[0].start_time


# -----------------------------------------------------------------------------
# Detailed metrics
# -----------------------------------------------------------------------------

class PlaneDeviation(BaseModel):
    phase: PhaseName
    deviation: float = Field(..., description="Degrees from ideal plane")
    severity: Literal["minor", "moderate", "major"]


class RotationalMetrics(BaseModel):
    max_rotation_rate: float
    rotation_acceleration: float
    axis_stability: float = Field(..., description="Consistency of rotation axis (0-100)")
    hand_path: List[float] = Field(default_factory=list)


class LinearMetrics(BaseModel):
    x_acceleration: List[float] = Field(default_factory=list)
    y_acceleration: List[float] = Field(default_factory=list)
    z_acceleration: List[float] = Field(default_factory=list)
    resultant_path: List[float] = Field(default_factory=list)


class DetailedSwingMetrics(SwingMetrics):
    """Basic metrics plus timing, speed, precision, power and balance features"""
    # Timing (ms)
    address_duration: float = 0.0
    backswing_duration: float = 0.0
    transition_duration: float = 0.0
    downswing_duration: float = 0.0
    follow_through_duration: float = 0.0

    # Speed
    backswing_speed: float = 0.0
    downswing_speed: float = 0.0
    speed_acceleration: float = 0.0
    peak_speed_timing: float = Field(0.0, description="Peak speed position (% through swing)")

    # Precision
    swing_consistency: float = 100.0
    path_deviation: float = 0.0
    face_angle_at_impact: float = 0.0
    attack_angle: float = 0.0

    # Power
    power_transfer: float = 50.0
    energy_generation: float = 0.0
    impact_force: float = 0.0

    # Balance and control
    balance_score: float = 100.0
    control_factor: float = 100.0
    rhythm_score: float = 50.0

    # 3D analysis
    swing_plane_deviations: List[PlaneDeviation] = Field(default_factory=list)
    rotational_velocity: RotationalMetrics
    linear_acceleration: LinearMetrics


class EfficiencyRecommendation(BaseModel):
    category: Literal["timing", "tempo", "power", "control", "balance"]
    severity: Literal["low", "medium", "high"]
    description: str
    improvement_potential: float
    specific_tips: List[str] = Field(default_factory=list)


class SwingEfficiencyMetrics(BaseModel):
    overall_efficiency: float
    energy_waste: float
    timing_efficiency: float
    mechanical_advantage: float
    recommendations: List[EfficiencyRecommendation] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Events and storage keys
# -----------------------------------------------------------------------------

class SwingEvent(BaseModel):
    """Event published by the engine"""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = Field(..., description="Type of event (swing_detected, calibration_completed, etc.)")
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    data: Optional[Dict[str, Any]] = Field(None, description="Additional event data")


class StoreKey(BaseModel):
    """Redis key structure helper"""
    data_type: str  # "swing_calibration", "learning_data", "calibration_session"
    user_id: str
    session_id: Optional[str] = None

    def to_key(self) -> str:
        """Convert to Redis key format"""
        if self.session_id:
            return f"{self.data_type}:{self.user_id}:{self.session_id}"
        return f"{self.data_type}:{self.user_id}"
