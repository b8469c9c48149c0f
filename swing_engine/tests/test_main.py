"""
Tests for swing_engine.main module
"""
import json

import pytest

from conftest import build_swing_stream
from swing_engine import main as cli
from swing_engine.engine import SwingEngine
from swing_engine.errors import SampleRejectedError


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from reconfiguring logging or writing a log file"""
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


def write_capture(path, records, extra_lines=()):
    with open(path, "w") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
        for line in extra_lines:
            f.write(line + "\n")
    return path


@pytest.fixture
def capture_file(tmp_path):
    records = [sample.model_dump() for sample in build_swing_stream()]
    return write_capture(tmp_path / "capture.jsonl", records)


class TestReadCapture:
    """Test JSONL capture reading"""

    def test_skips_blank_and_invalid_lines(self, tmp_path):
        """Test malformed lines are skipped"""
        path = tmp_path / "capture.jsonl"
        path.write_text('{"timestamp": 0, "ax": 0, "ay": 0, "az": 1}\n\nnot json\n{"timestamp": 20, "ax": 0, "ay": 0, "az": 1}\n')

        records = list(cli.read_capture(path))

        assert [r["timestamp"] for r in records] == [0, 20]


class TestReplay:
    """Test replaying records through an engine"""

    def test_replay_skips_rejected(self, test_settings, round_context):
        """Test rejected samples are skipped in lenient mode"""
        records = [s.model_dump() for s in build_swing_stream()]
        records.insert(20, {"timestamp": 0, "ax": 0, "ay": 0, "az": 5.0})

        analyses = cli.replay(records, SwingEngine(test_settings), round_context)

        assert len(analyses) == 1

    def test_replay_strict(self, test_settings, round_context):
        """Test strict mode raises on the first rejected sample"""
        records = [{"source": "unknown", "timestamp": 0}]

        with pytest.raises(SampleRejectedError):
            cli.replay(records, SwingEngine(test_settings), round_context, strict=True)


class TestMain:
    """Test the command line entry point"""

    def test_missing_file(self, tmp_path):
        """Test a missing capture file"""
        assert cli.main([str(tmp_path / "missing.jsonl"), "--no-log-file"]) == 1

    def test_replay_capture(self, capture_file, capsys):
        """Test a capture with one swing during a round"""
        assert cli.main([str(capture_file), "--round-active", "--club", "iron", "--hour", "10",
                         "--static-period", "10", "--no-log-file"]) == 0

        output = capsys.readouterr().out
        assert "Swing 1:" in output
        assert "ACCEPTED" in output
        assert "Best match: Standard Iron Swing" in output
        assert "1 swings detected, 1 accepted" in output

    def test_replay_outside_round(self, capture_file, capsys):
        """Test the same capture is rejected without a round"""
        assert cli.main([str(capture_file), "--no-log-file"]) == 0

        assert "1 swings detected, 0 accepted" in capsys.readouterr().out

    def test_strict_mode(self, tmp_path):
        """Test strict mode stops with exit code 2"""
        records = [s.model_dump() for s in build_swing_stream()]
        records.append({"timestamp": 0, "ax": 0, "ay": 0, "az": 1.0})
        path = write_capture(tmp_path / "capture.jsonl", records)

        assert cli.main([str(path), "--strict", "--no-log-file"]) == 2

    def test_invalid_club(self, capture_file):
        """Test argparse rejects unknown clubs"""
        with pytest.raises(SystemExit):
            cli.main([str(capture_file), "--club", "spoon"])
