"""
Error classification, recovery and health monitoring for the swing engine
"""
import logging
import threading
import time
import traceback
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .config import settings as default_settings, Settings
from global_config import HIGH_SEVERITY_ERRORS_PER_HOUR, ERROR_RATE_LIMIT, MAX_SENSOR_ACCELERATION
from .models import MotionSample

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions raised past the engine boundary
# -----------------------------------------------------------------------------

class SwingEngineError(Exception):
    """Base class for errors raised by the swing engine"""


class SampleRejectedError(SwingEngineError):
    """A streamed sample failed ordering or finiteness checks"""

    def __init__(self, error: "SwingAnalysisError"):
        super().__init__(error.message)
        self.error = error


class CalibrationError(SwingEngineError):
    """Calibration session state violation"""


# -----------------------------------------------------------------------------
# Error records
# -----------------------------------------------------------------------------

class SwingAnalysisErrorType(str, Enum):
    # Data validation
    INVALID_MOTION_DATA = "INVALID_MOTION_DATA"
    INSUFFICIENT_DATA_POINTS = "INSUFFICIENT_DATA_POINTS"
    CORRUPTED_SENSOR_DATA = "CORRUPTED_SENSOR_DATA"
    TIMESTAMP_OUT_OF_RANGE = "TIMESTAMP_OUT_OF_RANGE"

    # Sensor hardware
    WEARABLE_CONNECTION_LOST = "WEARABLE_CONNECTION_LOST"
    HANDHELD_SENSOR_UNAVAILABLE = "HANDHELD_SENSOR_UNAVAILABLE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SENSOR_CALIBRATION_FAILED = "SENSOR_CALIBRATION_FAILED"

    # Analysis
    SWING_DETECTION_FAILED = "SWING_DETECTION_FAILED"
    PATTERN_MATCHING_FAILED = "PATTERN_MATCHING_FAILED"
    METRICS_CALCULATION_FAILED = "METRICS_CALCULATION_FAILED"
    CONFIDENCE_TOO_LOW = "CONFIDENCE_TOO_LOW"

    # AI service
    AI_API_ERROR = "AI_API_ERROR"
    TEMPLATE_COMPARISON_FAILED = "TEMPLATE_COMPARISON_FAILED"
    FEEDBACK_GENERATION_FAILED = "FEEDBACK_GENERATION_FAILED"
    VOICE_SYNTHESIS_FAILED = "VOICE_SYNTHESIS_FAILED"

    # Storage and export
    STORAGE_FULL = "STORAGE_FULL"
    EXPORT_SIZE_EXCEEDED = "EXPORT_SIZE_EXCEEDED"
    FILE_WRITE_FAILED = "FILE_WRITE_FAILED"
    SHARING_FAILED = "SHARING_FAILED"

    # Network
    NO_INTERNET_CONNECTION = "NO_INTERNET_CONNECTION"
    API_RATE_LIMIT_EXCEEDED = "API_RATE_LIMIT_EXCEEDED"
    SERVER_UNAVAILABLE = "SERVER_UNAVAILABLE"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"

    # User context
    USER_NOT_AUTHENTICATED = "USER_NOT_AUTHENTICATED"
    ROUND_NOT_ACTIVE = "ROUND_NOT_ACTIVE"
    SKILL_LEVEL_UNKNOWN = "SKILL_LEVEL_UNKNOWN"
    INSUFFICIENT_HISTORY = "INSUFFICIENT_HISTORY"

    # Resources
    MEMORY_LIMIT_EXCEEDED = "MEMORY_LIMIT_EXCEEDED"
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    CONCURRENT_ANALYSIS_LIMIT = "CONCURRENT_ANALYSIS_LIMIT"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ErrorType = SwingAnalysisErrorType

CRITICAL_ERRORS = {
    ErrorType.MEMORY_LIMIT_EXCEEDED,
    ErrorType.STORAGE_FULL,
    ErrorType.CORRUPTED_SENSOR_DATA,
}

HIGH_SEVERITY_ERRORS = {
    ErrorType.WEARABLE_CONNECTION_LOST,
    ErrorType.HANDHELD_SENSOR_UNAVAILABLE,
    ErrorType.PERMISSION_DENIED,
    ErrorType.SERVER_UNAVAILABLE,
}

MEDIUM_SEVERITY_ERRORS = {
    ErrorType.SWING_DETECTION_FAILED,
    ErrorType.PATTERN_MATCHING_FAILED,
    ErrorType.AI_API_ERROR,
    ErrorType.NO_INTERNET_CONNECTION,
}

UNRECOVERABLE_ERRORS = {
    ErrorType.STORAGE_FULL,
    ErrorType.PERMISSION_DENIED,
    ErrorType.MEMORY_LIMIT_EXCEEDED,
}

# Keyword -> type, checked in order against the lowercased message
ERROR_KEYWORDS = [
    (("permission",), ErrorType.PERMISSION_DENIED),
    (("network", "fetch"), ErrorType.NO_INTERNET_CONNECTION),
    (("timeout",), ErrorType.REQUEST_TIMEOUT),
    (("memory", "heap"), ErrorType.MEMORY_LIMIT_EXCEEDED),
    (("storage", "disk"), ErrorType.STORAGE_FULL),
    (("openai", "api"), ErrorType.AI_API_ERROR),
    (("bluetooth", "garmin", "wearable"), ErrorType.WEARABLE_CONNECTION_LOST),
    (("sensor",), ErrorType.HANDHELD_SENSOR_UNAVAILABLE),
]

USER_MESSAGES = {
    ErrorType.WEARABLE_CONNECTION_LOST:
        "Lost connection to your wearable device. Please check that it's powered on and nearby.",
    ErrorType.HANDHELD_SENSOR_UNAVAILABLE:
        "Unable to access device sensors. Please check permissions and try again.",
    ErrorType.INSUFFICIENT_DATA_POINTS:
        "Not enough swing data captured. Please ensure a complete swing motion.",
    ErrorType.CONFIDENCE_TOO_LOW:
        "Swing analysis confidence is low. Try a more controlled swing or check sensor positioning.",
    ErrorType.AI_API_ERROR:
        "AI analysis temporarily unavailable. Basic feedback will be provided instead.",
    ErrorType.NO_INTERNET_CONNECTION:
        "No internet connection. Some features may be limited until connection is restored.",
    ErrorType.STORAGE_FULL:
        "Device storage is full. Please free up space to continue saving swing data.",
    ErrorType.PERMISSION_DENIED:
        "App permissions are required for swing analysis. Please enable in device settings.",
}
DEFAULT_USER_MESSAGE = "An error occurred during swing analysis. Please try again."

RECOVERY_ACTIONS = {
    ErrorType.WEARABLE_CONNECTION_LOST: "Reconnect to wearable device",
    ErrorType.HANDHELD_SENSOR_UNAVAILABLE: "Restart sensor monitoring",
    ErrorType.AI_API_ERROR: "Use offline analysis mode",
    ErrorType.NO_INTERNET_CONNECTION: "Enable offline mode",
}

FALLBACK_FEEDBACK = "Great swing! Keep practicing to improve your technique."

CORE_SERVICES = ("sensors", "ai_services", "storage", "network")


class SwingAnalysisError(BaseModel):
    """Classified fault with user-facing message"""
    error_type: SwingAnalysisErrorType
    message: str
    severity: ErrorSeverity
    timestamp: datetime = Field(default_factory=datetime.now)
    context: Dict[str, Any] = Field(default_factory=dict)
    recoverable: bool
    recovery_action: Optional[str] = None
    user_message: str
    technical_details: Optional[str] = None


class RecoveryStrategy(BaseModel):
    can_recover: bool
    retryable: bool
    max_retries: int = 0
    retry_delay_ms: int = 1000
    fallback: Optional[Any] = Field(None, description="Value used when every retry fails")
    recovery_steps: List[str] = Field(default_factory=list)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ServiceHealth(BaseModel):
    status: HealthStatus
    latency_ms: Optional[float] = None
    error_rate: Optional[float] = None
    last_error: Optional[SwingAnalysisError] = None


class HealthCheckResult(BaseModel):
    overall: HealthStatus
    services: Dict[str, ServiceHealth]
    recommendations: List[str] = Field(default_factory=list)


class ErrorStatistics(BaseModel):
    total_errors: int
    errors_by_type: Dict[str, int]
    errors_by_severity: Dict[str, int]
    recent_errors: List[SwingAnalysisError]
    error_rate: float


def determine_severity(error_type: SwingAnalysisErrorType) -> ErrorSeverity:
    if error_type in CRITICAL_ERRORS:
        return ErrorSeverity.CRITICAL
    if error_type in HIGH_SEVERITY_ERRORS:
        return ErrorSeverity.HIGH
    if error_type in MEDIUM_SEVERITY_ERRORS:
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


def infer_error_type(message: str) -> SwingAnalysisErrorType:
    """Guess the error type from keywords in an exception message"""
    lowered = message.lower()
    for keywords, error_type in ERROR_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return error_type
    return ErrorType.UNKNOWN_ERROR


def create_error(error_type: SwingAnalysisErrorType, message: str,
                 context: Optional[Dict[str, Any]] = None,
                 technical_details: Optional[str] = None) -> SwingAnalysisError:
    """Build a fully classified error record"""
    return SwingAnalysisError(
        error_type=error_type,
        message=message,
        severity=determine_severity(error_type),
        context=context or {},
        recoverable=error_type not in UNRECOVERABLE_ERRORS,
        recovery_action=RECOVERY_ACTIONS.get(error_type),
        user_message=USER_MESSAGES.get(error_type, DEFAULT_USER_MESSAGE),
        technical_details=technical_details,
    )


def create_validation_error(error_type: SwingAnalysisErrorType, message: str,
                            context: Optional[Dict[str, Any]] = None) -> SwingAnalysisError:
    """Validation failures are always medium severity and recoverable"""
    return SwingAnalysisError(
        error_type=error_type,
        message=message,
        severity=ErrorSeverity.MEDIUM,
        context=context or {},
        recoverable=True,
        user_message=USER_MESSAGES.get(error_type, DEFAULT_USER_MESSAGE),
    )


class ErrorMonitor:
    """Classifies faults, keeps a bounded error history and health-checks subsystems"""

    SENSOR_ERRORS = (ErrorType.HANDHELD_SENSOR_UNAVAILABLE, ErrorType.WEARABLE_CONNECTION_LOST)
    AI_ERRORS = (ErrorType.AI_API_ERROR, ErrorType.FEEDBACK_GENERATION_FAILED)
    STORAGE_ERRORS = (ErrorType.STORAGE_FULL, ErrorType.FILE_WRITE_FAILED)
    NETWORK_ERRORS = (ErrorType.NO_INTERNET_CONNECTION, ErrorType.SERVER_UNAVAILABLE)

    def __init__(self, config: Optional[Settings] = None, sleep: Callable[[float], None] = time.sleep):
        self.config = config or default_settings
        self._history = deque(maxlen=self.config.error_history_size)
        self._analyses = deque(maxlen=self.config.analysis_history_size)
        self._lock = threading.Lock()
        self._sleep = sleep

        # name -> (probe, error type recorded when the probe itself raises)
        self._probes: Dict[str, Any] = {
            "sensors": (self._check_sensor_health, ErrorType.HANDHELD_SENSOR_UNAVAILABLE),
            "ai_services": (self._check_ai_service_health, ErrorType.AI_API_ERROR),
            "storage": (self._check_storage_health, ErrorType.STORAGE_FULL),
            "network": (self._check_network_health, ErrorType.NO_INTERNET_CONNECTION),
        }

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def handle_error(self, error: Union[Exception, str, SwingAnalysisError],
                     context: Optional[Dict[str, Any]] = None,
                     error_type: Optional[SwingAnalysisErrorType] = None) -> SwingAnalysisError:
        """Classify an error, record it and return the record.

        Args:
            error: Exception, plain message, or an already classified record
            context: Extra details stored with the record
            error_type: Explicit type; inferred from the message when omitted

        Returns:
            The recorded SwingAnalysisError
        """
        if isinstance(error, SwingAnalysisError):
            record = error
        else:
            message = str(error)
            details = None
            if isinstance(error, BaseException) and error.__traceback__ is not None:
                details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            record = create_error(error_type or infer_error_type(message), message, context, details)

        self.record(record)
        return record

    def record(self, error: SwingAnalysisError):
        """Append to the history (oldest evicted first), log and check patterns"""
        with self._lock:
            self._history.append(error)
        self._log_error(error)
        self.check_error_patterns()

    def _log_error(self, error: SwingAnalysisError):
        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            level = logging.ERROR
        elif error.severity == ErrorSeverity.MEDIUM:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, "SwingAnalysisError [%s] %s (severity=%s, context=%s)",
                   error.error_type.value, error.message, error.severity.value, error.context)

    @property
    def history(self) -> List[SwingAnalysisError]:
        """Snapshot of recorded errors, oldest first"""
        with self._lock:
            return list(self._history)

    def clear_history(self):
        with self._lock:
            self._history.clear()
        logger.info("Error history cleared")

    def _recent(self, errors: List[SwingAnalysisError], within: timedelta = timedelta(hours=1)):
        cutoff = datetime.now() - within
        return [e for e in errors if e.timestamp > cutoff]

    @staticmethod
    def _recent_times(times: List[datetime], within: timedelta = timedelta(hours=1)) -> List[datetime]:
        cutoff = datetime.now() - within
        return [t for t in times if t > cutoff]

    def record_analysis(self):
        """Count one completed analysis towards the hourly error rate"""
        with self._lock:
            self._analyses.append(datetime.now())

    def check_error_patterns(self) -> bool:
        """Warn when high-severity errors or the hourly error rate per analysis exceed limits.

        Returns:
            True if any threshold was exceeded
        """
        history = self.history
        recent = self._recent(history)
        exceeded = False

        high = [e for e in recent if e.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)]
        if len(high) >= HIGH_SEVERITY_ERRORS_PER_HOUR:
            logger.warning("High severity error threshold exceeded: %d in the last hour (limit %d)",
                           len(high), HIGH_SEVERITY_ERRORS_PER_HOUR)
            exceeded = True

        # Rate is only defined once analyses have been recorded
        with self._lock:
            analyses = list(self._analyses)
        recent_analyses = len(self._recent_times(analyses))
        error_rate = len(recent) / recent_analyses if recent_analyses else 0.0
        if error_rate > ERROR_RATE_LIMIT:
            logger.warning("Error rate threshold exceeded: %.3f (limit %.2f)", error_rate, ERROR_RATE_LIMIT)
            exceeded = True

        return exceeded

    def statistics(self) -> ErrorStatistics:
        history = self.history
        recent = self._recent(history)
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for error in history:
            by_type[error.error_type.value] = by_type.get(error.error_type.value, 0) + 1
            by_severity[error.severity.value] = by_severity.get(error.severity.value, 0) + 1

        return ErrorStatistics(
            total_errors=len(history),
            errors_by_type=by_type,
            errors_by_severity=by_severity,
            recent_errors=recent[-10:],
            error_rate=len(recent) / max(1, len(history)),
        )

    # -------------------------------------------------------------------------
    # Input validation
    # -------------------------------------------------------------------------

    def validate_motion_data(self, samples: Sequence[MotionSample]) -> Optional[SwingAnalysisError]:
        """Check a motion window, stopping at the first violation.

        Returns:
            None if the window is usable, else the (unrecorded) validation error
        """
        if not samples:
            return create_validation_error(
                ErrorType.INSUFFICIENT_DATA_POINTS, "No motion data provided", {"data_length": 0})

        minimum = self.config.min_motion_samples
        if len(samples) < minimum:
            return create_validation_error(
                ErrorType.INSUFFICIENT_DATA_POINTS,
                f"Insufficient motion data points: {len(samples)} (minimum: {minimum})",
                {"data_length": len(samples), "minimum": minimum})

        for i, sample in enumerate(samples):
            if not sample.is_finite():
                return create_validation_error(
                    ErrorType.INVALID_MOTION_DATA, f"Invalid motion data at index {i}",
                    {"index": i, "data": sample.model_dump()})
            if self.is_corrupted(sample):
                return create_validation_error(
                    ErrorType.CORRUPTED_SENSOR_DATA, f"Corrupted sensor data detected at index {i}",
                    {"index": i, "data": sample.model_dump()})

        for i in range(1, len(samples)):
            if samples[i].timestamp <= samples[i - 1].timestamp:
                return create_validation_error(
                    ErrorType.TIMESTAMP_OUT_OF_RANGE, f"Invalid timestamp ordering at index {i}",
                    {"index": i, "current": samples[i].timestamp, "previous": samples[i - 1].timestamp})

        return None

    @staticmethod
    def is_corrupted(sample: MotionSample) -> bool:
        """Extreme acceleration on any axis, or a stuck all-zero reading"""
        axes = (sample.ax, sample.ay, sample.az)
        if any(abs(value) > MAX_SENSOR_ACCELERATION for value in axes):
            return True
        return all(value == 0 for value in axes)

    def validate_swing_summary(self, summary: Dict[str, Any],
                               min_confidence: float = 50) -> Optional[SwingAnalysisError]:
        """Check a finished swing summary before it is stored or shown"""
        if not summary.get("timestamp") or not summary.get("club_type"):
            return create_validation_error(
                ErrorType.INVALID_MOTION_DATA, "Missing required swing analysis fields", {"summary": summary})

        confidence = summary.get("confidence", 0)
        if confidence < min_confidence:
            return create_validation_error(
                ErrorType.CONFIDENCE_TOO_LOW,
                f"Swing confidence ({confidence}%) below minimum threshold ({min_confidence}%)",
                {"confidence": confidence, "threshold": min_confidence})

        ranges = [
            ("clubhead_speed", 20, 150),
            ("swing_tempo", 0.5, 10),
            ("balance_score", 0, 100),
            ("confidence", 0, 100),
        ]
        for metric, low, high in ranges:
            value = summary.get(metric)
            if value is None:
                continue
            if value < low or value > high:
                return create_validation_error(
                    ErrorType.INVALID_MOTION_DATA, f"Invalid {metric}: {value}",
                    {"metric": metric, "value": value, "range": f"{low}-{high}"})

        return None

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def recovery_strategy(self, error: SwingAnalysisError) -> RecoveryStrategy:
        if error.error_type == ErrorType.WEARABLE_CONNECTION_LOST:
            return RecoveryStrategy(
                can_recover=True, retryable=True, max_retries=3, retry_delay_ms=2000,
                recovery_steps=[
                    "Check wearable device is powered on",
                    "Ensure Bluetooth is enabled",
                    "Try reconnecting to device",
                    "Restart the app if connection fails",
                ])
        if error.error_type == ErrorType.HANDHELD_SENSOR_UNAVAILABLE:
            return RecoveryStrategy(
                can_recover=True, retryable=True, max_retries=2, retry_delay_ms=1000,
                recovery_steps=[
                    "Check device sensor permissions",
                    "Ensure device is not in airplane mode",
                    "Restart sensor monitoring",
                ])
        if error.error_type == ErrorType.AI_API_ERROR:
            return RecoveryStrategy(
                can_recover=True, retryable=True, max_retries=3, retry_delay_ms=5000,
                fallback=FALLBACK_FEEDBACK,
                recovery_steps=[
                    "Check internet connection",
                    "Retry API request with backoff",
                    "Use cached feedback if available",
                    "Generate basic feedback without AI",
                ])
        if error.error_type == ErrorType.INSUFFICIENT_DATA_POINTS:
            return RecoveryStrategy(
                can_recover=True, retryable=False,
                recovery_steps=[
                    "Collect more motion data",
                    "Ensure proper swing duration (minimum 2 seconds)",
                    "Check sensor sampling rate",
                ])
        if error.error_type == ErrorType.CONFIDENCE_TOO_LOW:
            return RecoveryStrategy(
                can_recover=True, retryable=False,
                recovery_steps=[
                    "Retry swing analysis",
                    "Check sensor positioning",
                    "Ensure proper swing execution",
                    "Consider recalibration",
                ])
        if error.error_type in UNRECOVERABLE_ERRORS:
            steps = {
                ErrorType.STORAGE_FULL: ["Free up device storage", "Delete old swing data",
                                         "Export data and clear cache"],
                ErrorType.PERMISSION_DENIED: ["Enable motion sensor permissions in device settings"],
                ErrorType.MEMORY_LIMIT_EXCEEDED: ["Close other apps", "Restart the app"],
            }
            return RecoveryStrategy(can_recover=False, retryable=False,
                                    recovery_steps=steps[error.error_type])

        return RecoveryStrategy(
            can_recover=False, retryable=True, max_retries=1,
            recovery_steps=["Restart the feature", "Check app permissions", "Update the app if available"])

    def retry_with_backoff(self, operation: Callable[[], Any], max_retries: int,
                           base_delay_ms: int = 1000) -> Optional[Any]:
        """Call operation up to max_retries times with exponential backoff.

        Returns:
            The operation's result, or None once every attempt has failed
        """
        return self._attempt_with_backoff(operation, max_retries, base_delay_ms)[1]

    def _attempt_with_backoff(self, operation, max_retries, base_delay_ms):
        """Returns (succeeded, result); result may legitimately be None"""
        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                return True, operation()
            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay_ms = base_delay_ms * (2 ** (attempt - 1))
                    logger.info("Retry attempt %d/%d in %dms", attempt, max_retries, delay_ms)
                    self._sleep(delay_ms / 1000.0)

        if last_error is not None:
            self.handle_error(last_error, {"attempts": max_retries,
                                           "operation": getattr(operation, "__name__", repr(operation))})
        return False, None

    def with_error_handling(self, operation: Callable[[], Any], context: Optional[Dict[str, Any]] = None,
                            retry_on_failure: bool = False, fallback: Any = None) -> Optional[Any]:
        """Run operation, recording any failure and recovering where the error allows.

        Args:
            operation: Zero-argument callable
            context: Recorded with the error
            retry_on_failure: Retry recoverable, retryable errors with backoff
            fallback: Returned when the operation (and any retries) fail

        Returns:
            The operation's result, a retried result, or the fallback
        """
        try:
            return operation()
        except Exception as e:
            error = self.handle_error(e, context)

            if retry_on_failure and error.recoverable:
                strategy = self.recovery_strategy(error)
                if strategy.retryable and strategy.max_retries:
                    succeeded, result = self._attempt_with_backoff(operation, strategy.max_retries,
                                                                   strategy.retry_delay_ms)
                    if succeeded:
                        return result
                    if fallback is None:
                        return strategy.fallback

            return fallback

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def register_probe(self, name: str, probe: Callable[[], ServiceHealth],
                       failure_type: SwingAnalysisErrorType = ErrorType.UNKNOWN_ERROR):
        """Add or replace a subsystem health probe"""
        self._probes[name] = (probe, failure_type)

    def _rate_for(self, error_types) -> tuple:
        history = self.history
        matching = [e for e in history if e.error_type in error_types]
        rate = len(matching) / max(1, len(history))
        last = matching[-1] if matching else None
        return rate, last

    @staticmethod
    def _grade(rate: float, unhealthy: float, degraded: float,
               latency_ms: Optional[float] = None, latency_limit: Optional[float] = None) -> HealthStatus:
        if rate > unhealthy:
            return HealthStatus.UNHEALTHY
        if rate > degraded or (latency_limit is not None and latency_ms is not None and latency_ms > latency_limit):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _check_sensor_health(self) -> ServiceHealth:
        start = time.monotonic()
        rate, last = self._rate_for(self.SENSOR_ERRORS)
        latency = (time.monotonic() - start) * 1000
        return ServiceHealth(status=self._grade(rate, 0.3, 0.1, latency, 500),
                             latency_ms=latency, error_rate=rate, last_error=last)

    def _check_ai_service_health(self) -> ServiceHealth:
        start = time.monotonic()
        rate, last = self._rate_for(self.AI_ERRORS)
        latency = (time.monotonic() - start) * 1000
        return ServiceHealth(status=self._grade(rate, 0.2, 0.05, latency, 2000),
                             latency_ms=latency, error_rate=rate, last_error=last)

    def _check_storage_health(self) -> ServiceHealth:
        rate, last = self._rate_for(self.STORAGE_ERRORS)
        return ServiceHealth(status=self._grade(rate, 0.1, 0.02), error_rate=rate, last_error=last)

    def _check_network_health(self) -> ServiceHealth:
        start = time.monotonic()
        rate, last = self._rate_for(self.NETWORK_ERRORS)
        latency = (time.monotonic() - start) * 1000
        return ServiceHealth(status=self._grade(rate, 0.3, 0.1, latency, 1000),
                             latency_ms=latency, error_rate=rate, last_error=last)

    def _run_probe(self, name: str) -> ServiceHealth:
        probe, failure_type = self._probes[name]
        try:
            return probe()
        except Exception as e:
            logger.error("Health probe '%s' failed: %s", name, e)
            return ServiceHealth(status=HealthStatus.UNHEALTHY,
                                 last_error=self.handle_error(e, {"probe": name}, failure_type))

    def perform_health_check(self) -> HealthCheckResult:
        """Run every probe concurrently.

        The overall status aggregates the four core subsystems only; probes
        added with register_probe appear in services and recommendations.
        """
        names = list(self._probes)
        with ThreadPoolExecutor(max_workers=len(names)) as executor:
            results = list(executor.map(self._run_probe, names))
        services = dict(zip(names, results))

        # Extra registered probes are reported but do not drive the overall status
        statuses = [services[name].status for name in CORE_SERVICES if name in services]
        if all(status == HealthStatus.HEALTHY for status in statuses):
            overall = HealthStatus.HEALTHY
        elif any(status == HealthStatus.DEGRADED for status in statuses):
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.UNHEALTHY

        return HealthCheckResult(overall=overall, services=services,
                                 recommendations=self._health_recommendations(services))

    @staticmethod
    def _health_recommendations(services: Dict[str, ServiceHealth]) -> List[str]:
        advice = {
            "sensors": "Check sensor permissions and device connectivity",
            "ai_services": "Verify internet connection for AI services",
            "storage": "Free up device storage space",
            "network": "Check internet connection and try again",
        }
        recommendations = [
            advice.get(name, f"Check {name} subsystem")
            for name, health in services.items() if health.status != HealthStatus.HEALTHY
        ]
        return recommendations or ["All systems operating normally"]

