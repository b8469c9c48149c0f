"""
Reference swing templates per club type
"""
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ClubType, MetricRange, PhaseName, SwingMetrics

logger = logging.getLogger(__name__)


def _as_fields(value):
    """Re-validate a model instance from its fields so nested template data is frozen"""
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


class TemplateRange(MetricRange):
    model_config = ConfigDict(frozen=True)


class TemplateMetrics(SwingMetrics):
    model_config = ConfigDict(frozen=True)


class SwingTolerances(BaseModel):
    model_config = ConfigDict(frozen=True)

    speed_range: TemplateRange
    backswing_angle_range: TemplateRange
    tempo_range: TemplateRange
    timing_tolerance: float = Field(..., description="Impact timing tolerance (ms)")

    @field_validator("speed_range", "backswing_angle_range", "tempo_range", mode="before")
    @classmethod
    def _freeze_ranges(cls, value):
        return _as_fields(value)


class PhaseTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: PhaseName
    expected_duration: float = Field(..., description="Expected duration (ms)")
    duration_tolerance: float
    expected_acceleration: float = Field(..., description="Expected peak acceleration (m/s²)")
    acceleration_tolerance: float
    critical: bool = False


class SwingTemplate(BaseModel):
    """Static reference data; replaced, never mutated"""
    model_config = ConfigDict(frozen=True)

    template_id: str
    name: str
    club_type: ClubType
    description: str = ""
    ideal_metrics: TemplateMetrics
    tolerances: SwingTolerances
    phases: Tuple[PhaseTemplate, ...]

    @field_validator("ideal_metrics", mode="before")
    @classmethod
    def _freeze_metrics(cls, value):
        return _as_fields(value)


def _phase(name: PhaseName, duration, duration_tol, accel, accel_tol, critical) -> PhaseTemplate:
    return PhaseTemplate(phase=name, expected_duration=duration, duration_tolerance=duration_tol,
                         expected_acceleration=accel, acceleration_tolerance=accel_tol, critical=critical)


def _metrics(max_speed, backswing, downswing, impact_timing, follow_through, tempo, plane, clubhead) -> SwingMetrics:
    return SwingMetrics(max_speed=max_speed, backswing_angle=backswing, downswing_angle=downswing,
                        impact_timing=impact_timing, follow_through_angle=follow_through, swing_tempo=tempo,
                        swing_plane=plane, clubhead_speed=clubhead)


def _tolerances(speed, backswing, tempo, timing) -> SwingTolerances:
    return SwingTolerances(speed_range=MetricRange(min=speed[0], max=speed[1]),
                           backswing_angle_range=MetricRange(min=backswing[0], max=backswing[1]),
                           tempo_range=MetricRange(min=tempo[0], max=tempo[1]),
                           timing_tolerance=timing)


DRIVER_TEMPLATE = SwingTemplate(
    template_id="driver_standard",
    name="Standard Driver Swing",
    club_type="driver",
    description="Optimal driver swing for maximum distance and accuracy",
    ideal_metrics=_metrics(15, 90, 85, 1200, 110, 3.0, 45, 95),
    tolerances=_tolerances((12, 18), (75, 105), (2.5, 4.0), 200),
    phases=(
        _phase(PhaseName.ADDRESS, 500, 200, 1.0, 0.5, False),
        _phase(PhaseName.BACKSWING, 800, 150, 3.0, 1.0, True),
        _phase(PhaseName.TRANSITION, 100, 50, 2.0, 1.0, True),
        _phase(PhaseName.DOWNSWING, 300, 75, 12.0, 3.0, True),
        _phase(PhaseName.IMPACT, 50, 25, 15.0, 2.0, True),
        _phase(PhaseName.FOLLOWTHROUGH, 600, 150, 8.0, 2.0, False),
    ),
)

IRON_TEMPLATE = SwingTemplate(
    template_id="iron_standard",
    name="Standard Iron Swing",
    club_type="iron",
    description="Controlled iron swing for accuracy and consistent ball striking",
    ideal_metrics=_metrics(12, 85, 80, 1000, 95, 2.8, 50, 75),
    tolerances=_tolerances((9, 15), (70, 95), (2.3, 3.5), 150),
    phases=(
        _phase(PhaseName.ADDRESS, 400, 150, 1.0, 0.5, False),
        _phase(PhaseName.BACKSWING, 700, 100, 2.5, 0.8, True),
        _phase(PhaseName.TRANSITION, 80, 30, 1.8, 0.7, True),
        _phase(PhaseName.DOWNSWING, 250, 50, 10.0, 2.0, True),
        _phase(PhaseName.IMPACT, 40, 20, 12.0, 1.5, True),
        _phase(PhaseName.FOLLOWTHROUGH, 500, 100, 6.0, 1.5, False),
    ),
)

WEDGE_TEMPLATE = SwingTemplate(
    template_id="wedge_standard",
    name="Standard Wedge Swing",
    club_type="wedge",
    description="Precise wedge swing for short game accuracy and spin control",
    ideal_metrics=_metrics(8, 70, 65, 800, 75, 2.5, 55, 50),
    tolerances=_tolerances((6, 10), (55, 80), (2.0, 3.2), 100),
    phases=(
        _phase(PhaseName.ADDRESS, 350, 100, 0.8, 0.3, False),
        _phase(PhaseName.BACKSWING, 500, 80, 2.0, 0.6, True),
        _phase(PhaseName.TRANSITION, 60, 25, 1.5, 0.5, True),
        _phase(PhaseName.DOWNSWING, 200, 40, 6.0, 1.5, True),
        _phase(PhaseName.IMPACT, 35, 15, 8.0, 1.0, True),
        _phase(PhaseName.FOLLOWTHROUGH, 400, 80, 4.0, 1.0, False),
    ),
)

STANDARD_TEMPLATES = (DRIVER_TEMPLATE, IRON_TEMPLATE, WEDGE_TEMPLATE)


class TemplateLibrary:
    """Registry of swing templates keyed by template id"""

    def __init__(self, templates: Optional[List[SwingTemplate]] = None):
        self._templates: Dict[str, SwingTemplate] = {}
        for template in (templates if templates is not None else STANDARD_TEMPLATES):
            self._templates[template.template_id] = template
        logger.info("Template library initialized with %d templates", len(self._templates))

    def available(self, club_type: Optional[ClubType] = None) -> List[SwingTemplate]:
        templates = list(self._templates.values())
        if club_type:
            templates = [t for t in templates if t.club_type == club_type]
        return templates

    def get(self, template_id: str) -> Optional[SwingTemplate]:
        return self._templates.get(template_id)

    def add(self, template: SwingTemplate):
        """Register a custom template, replacing any entry with the same id"""
        self._templates[template.template_id] = template.model_copy(deep=True)
        logger.info("Added custom template: %s", template.name)
