"""Tests for the deployguard command line."""

from unittest.mock import patch

import pytest
import yaml
from deployguard.cli.audit import audit_command
from deployguard.cli.gate import gate_command
from deployguard.cli.main import build_parser, main, run
from deployguard.cli.verdict import verdict_command
from deployguard.core.errors import ExitCode

SECRET_SIGNAL = {
    "resource_type": "AWS::Lambda::Function",
    "logical_id": "Fn",
    "status_reason": "Secrets Manager cannot find the specified secret",
    "timestamp": "2026-03-14T09:00:00Z",
}

DEPRECATION_SIGNAL = {
    "resource_type": "AWS::CDK::Metadata",
    "logical_id": "CDKMetadata",
    "status_reason": "[DEPRECATED] aws-cdk-lib.aws_s3.BucketProps#versioned",
    "timestamp": "2026-03-14T09:00:00Z",
}


@pytest.fixture(autouse=True)
def _no_logging_reconfigure():
    with patch("deployguard.cli.main.configure_logging"):
        yield


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _signals_file(workdir, *signals):
    path = workdir / "signals.yaml"
    path.write_text(yaml.safe_dump({"signals": list(signals)}))
    return str(path)


def _verdict_record(verdict_id, **overrides):
    record = {
        "id": verdict_id,
        "execution_id": "exec-1",
        "policy_snapshot_id": "default-policy",
        "fingerprint_id": "fp-1",
        "error_class": "MISSING_SECRET",
        "service": "SecretsManager",
        "confidence_score": 85,
        "proposed_action": "OPEN_ISSUE",
        "verdict_type": "REJECTED",
        "created_at": "2026-03-14T09:00:00+00:00",
        "signals": [SECRET_SIGNAL],
    }
    record.update(overrides)
    return record


class TestParser:
    def test_subcommands(self):
        args = build_parser().parse_args(["verdict", "signals.yaml", "--output", "json"])

        assert args.command == "verdict"
        assert args.output == "json"

    def test_gate_target(self):
        args = build_parser().parse_args(["gate", "GREEN", "--policy", "p.yaml"])

        assert (args.command, args.target, args.policy) == ("gate", "GREEN", "p.yaml")


class TestVerdictCommand:
    def test_text_output(self, workdir, capsys):
        code = verdict_command(_signals_file(workdir, SECRET_SIGNAL), execution_id="exec-1")

        out = capsys.readouterr().out
        assert code == 0
        assert "MISSING_SECRET" in out
        assert "REJECTED" in out

    def test_json_output(self, workdir, capsys):
        code = verdict_command(_signals_file(workdir, SECRET_SIGNAL), output_format="json")

        out = capsys.readouterr().out
        assert code == 0
        assert '"simple_verdict": "RED"' in out
        assert '"simple_action": "ABORT"' in out


class TestGateCommand:
    """Exit 0 when allowed, 2 when blocked."""

    @pytest.mark.parametrize(
        "target,expected",
        [
            ("GREEN", ExitCode.SUCCESS),
            ("APPROVED", ExitCode.SUCCESS),
            ("RED", ExitCode.BLOCKED),
            ("ESCALATED", ExitCode.BLOCKED),
            ("RETRY", ExitCode.BLOCKED),
        ],
    )
    def test_verdict_names(self, workdir, target, expected):
        assert gate_command(target) == expected

    def test_signals_file_blocked(self, workdir, capsys):
        code = gate_command(_signals_file(workdir, SECRET_SIGNAL))

        assert code == ExitCode.BLOCKED
        assert "Deployment BLOCKED" in capsys.readouterr().out

    def test_signals_file_allowed(self, workdir):
        assert gate_command(_signals_file(workdir, DEPRECATION_SIGNAL)) == ExitCode.SUCCESS


class TestAuditCommand:
    def test_all_compliant(self, workdir, capsys):
        path = workdir / "verdicts.yaml"
        path.write_text(yaml.safe_dump({"verdicts": [_verdict_record("v-1"), _verdict_record("v-2")]}))

        code = audit_command(str(path))

        assert code == ExitCode.SUCCESS
        assert "Consistency score" in capsys.readouterr().out

    def test_non_compliant(self, workdir, capsys):
        path = workdir / "verdicts.yaml"
        path.write_text(
            yaml.safe_dump([_verdict_record("v-1"), _verdict_record("v-2", error_class="DISK_FULL")])
        )

        code = audit_command(str(path))

        assert code == ExitCode.WARNING
        assert "Error class DISK_FULL not defined in policy" in capsys.readouterr().out


class TestRun:
    def test_dispatches_gate(self, workdir):
        assert run(["gate", "HOLD"]) == ExitCode.BLOCKED

    def test_no_command_prints_help(self, workdir, capsys):
        assert run([]) == 1
        assert "usage: deployguard" in capsys.readouterr().out

    def test_config_errors_map_to_exit_code(self, workdir):
        assert run(["verdict", str(workdir / "missing.yaml")]) == ExitCode.CONFIG_ERROR

    def test_main_exits(self, workdir):
        with pytest.raises(SystemExit) as exc_info:
            main(["gate", "GREEN"])

        assert exc_info.value.code == 0
