"""
Replay a JSONL motion capture through the swing engine
"""
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from .config import settings
from .calibration_store import CalibrationStore
from .engine import SwingAnalysis, SwingEngine
from .errors import SampleRejectedError
from .validation import ActivityLevel, ValidationContext
from global_config import LOG_LEVEL, LOG_FORMAT, LOG_FILE

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL, log_file: Optional[str] = LOG_FILE):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT, handlers=handlers)


def read_capture(path: Path) -> Iterator[dict]:
    """Yield one record per non-blank line; malformed JSON lines are logged and skipped"""
    with open(path, "r") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping line %d: invalid JSON (%s)", line_number, e)


def replay(records, engine: SwingEngine, context: ValidationContext,
           strict: bool = False) -> List[SwingAnalysis]:
    """Stream records through the engine and analyze each completed swing.

    Records carrying a ``source`` tag are device payloads; anything else is
    read as a flat MotionSample.
    """
    analyses = []
    for record in records:
        try:
            swing = engine.ingest(record)
        except SampleRejectedError as e:
            if strict:
                raise
            logger.warning("Sample rejected: %s", e)
            continue
        if swing is not None:
            analyses.append(engine.process(swing, context))
    return analyses


def format_analysis(index: int, analysis: SwingAnalysis) -> str:
    swing = analysis.swing
    metrics = swing.metrics
    best = analysis.best_match
    lines = [
        f"Swing {index}: {swing.swing_id[:8]}... "
        f"{'ACCEPTED' if analysis.accepted else 'REJECTED'} "
        f"(confidence {analysis.validation.adjusted_confidence}, "
        f"false-positive risk {analysis.validation.false_positive_risk})",
        "  Phases: " + ", ".join(f"{p.phase.value} {p.duration:.0f}ms" for p in swing.phases),
    ]
    if metrics:
        lines.append(f"  Tempo {metrics.swing_tempo:.2f}  max speed {metrics.max_speed:.1f} m/s²  "
                     f"clubhead {metrics.clubhead_speed:.0f} mph")
    if best:
        lines.append(f"  Best match: {best.template_name} ({best.overall_match}%)")
    for recommendation in analysis.validation.recommendations + (best.recommendations if best else []):
        lines.append(f"  - {recommendation}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a motion capture through the swing engine")
    parser.add_argument("capture", type=Path, help="JSONL file with one sample or device payload per line")
    parser.add_argument("--user", help="User id whose stored calibration should be applied")
    parser.add_argument("--club", choices=["driver", "iron", "wedge", "putter"], help="Club in use")
    parser.add_argument("--round-active", action="store_true", help="Treat the capture as taken during a round")
    parser.add_argument("--hour", type=int, choices=range(24), metavar="0-23",
                        help="Hour of day the capture was taken (default: now)")
    parser.add_argument("--static-period", type=float, default=0.0,
                        help="Seconds the device was held still before the capture")
    parser.add_argument("--redis", action="store_true", help="Load calibrations from Redis")
    parser.add_argument("--strict", action="store_true", help="Stop at the first rejected sample")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level")
    parser.add_argument("--no-log-file", action="store_true", help="Log to stdout only")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, None if args.no_log_file else LOG_FILE)

    if not args.capture.exists():
        logger.error("Capture file not found: %s", args.capture)
        return 1

    store = CalibrationStore(settings) if args.redis else None
    engine = SwingEngine(settings, store=store, user_id=args.user)
    if args.club:
        engine.set_club(args.club)

    hour = args.hour if args.hour is not None else datetime.now().hour
    context = ValidationContext(is_round_active=args.round_active, time_of_day=hour,
                                recent_activity=ActivityLevel(static_period=args.static_period))
    try:
        analyses = replay(read_capture(args.capture), engine, context, strict=args.strict)
    except SampleRejectedError as e:
        logger.error("Replay stopped: %s", e)
        return 2

    for index, analysis in enumerate(analyses, 1):
        print(format_analysis(index, analysis))
    accepted = sum(1 for a in analyses if a.accepted)
    print(f"\n{len(analyses)} swings detected, {accepted} accepted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
