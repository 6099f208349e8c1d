"""Tests for CLI output helpers."""

from deployguard.cli import ux


class TestMessages:
    def test_success(self, capsys):
        ux.success("Policy loaded")

        assert "✓ Policy loaded" in capsys.readouterr().out

    def test_error(self, capsys):
        ux.error("Gate closed")

        assert "✗ Gate closed" in capsys.readouterr().out

    def test_warning(self, capsys):
        ux.warning("v-1 not compliant")

        assert "⚠ v-1 not compliant" in capsys.readouterr().out


class TestStructuredOutput:
    def test_header(self, capsys):
        ux.header("Verdict Consistency Audit")

        assert "Verdict Consistency Audit" in capsys.readouterr().out

    def test_table(self, capsys):
        ux.print_table("Signals", ["Type", "Reason"], [["AWS::S3::Bucket", "boom"]])

        out = capsys.readouterr().out
        assert "Signals" in out
        assert "AWS::S3::Bucket" in out

    def test_key_value(self, capsys):
        ux.print_key_value({"Verdicts": "3"}, title="Summary")

        out = capsys.readouterr().out
        assert "Summary" in out
        assert "Verdicts: 3" in out
