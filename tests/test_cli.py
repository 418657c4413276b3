"""
CLI tests.
"""

import json

import pytest
import yaml

from pharmachain.cli import OutputFormat, PharmaChainCLI, format_output, main


def _run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestFormatOutput:

    def test_json(self):
        assert json.loads(format_output({"a": 1}, OutputFormat.JSON)) == {"a": 1}

    def test_yaml(self):
        assert yaml.safe_load(format_output({"a": 1}, OutputFormat.YAML)) == {"a": 1}

    def test_table(self):
        table = format_output([{"id": 1, "name": "Aspirin"}], OutputFormat.TABLE)
        lines = table.splitlines()
        assert lines[0].split(" | ")[0].strip() == "id"
        assert "Aspirin" in lines[2]


class TestConfigCommands:

    def test_show(self, capsys):
        code, out, _ = _run(capsys, "config", "show")
        assert code == 0
        assert json.loads(out)["validation"]["max_text_length"] == 256

    def test_get(self, capsys):
        code, out, _ = _run(capsys, "config", "get", "policy.lock_after_delivery")
        assert code == 0
        assert json.loads(out) == {"path": "policy.lock_after_delivery", "value": False}

    def test_validate_invalid_environment(self, capsys, monkeypatch):
        monkeypatch.setenv("PHARMACHAIN_LOG_FORMAT", "xml")
        code, out, _ = _run(capsys, "config", "validate")
        assert code == 1
        report = json.loads(out)
        assert report["valid"] is False
        assert report["errors"][0].startswith("observability.log_format")

    def test_validate(self, capsys):
        code, out, _ = _run(capsys, "config", "validate")
        assert code == 0
        assert json.loads(out) == {"valid": True, "errors": []}

    def test_load_config_file(self, capsys, tmp_path):
        path = tmp_path / "pharmachain.yaml"
        path.write_text("policy:\n  require_manufacturer_role: true\n", encoding="utf-8")
        code, out, _ = _run(capsys, "--config", str(path), "config", "get", "policy.require_manufacturer_role")
        assert code == 0
        assert json.loads(out)["value"] is True

    def test_schema_yaml(self, capsys):
        code, out, _ = _run(capsys, "--format", "yaml", "config", "schema")
        assert code == 0
        assert "PHARMACHAIN_LOCK_AFTER_DELIVERY" in out


class TestDemoAndAudit:

    def test_demo_exports_verifiable_trail(self, capsys, tmp_path):
        export = tmp_path / "audit.json"
        code, out, _ = _run(capsys, "demo", "--export", str(export))
        assert code == 0

        summary = json.loads(out)
        assert summary["product"]["name"] == "Aspirin"
        assert summary["product"]["batch_number"] == "BATCH-001"
        assert summary["product"]["status"] == "RECEIVED"
        assert summary["product"]["is_verified"] is True
        assert summary["product"]["current_owner"] == summary["actors"]["distributor"]
        assert summary["audit"]["chain_valid"] is True
        intruder_steps = [s for s in summary["steps"] if s["actor"] == "intruder"]
        assert intruder_steps[0]["result"] == "rejected: Only the owner can scan/update status"

        code, out, _ = _run(capsys, "audit", "verify", str(export))
        assert code == 0
        assert json.loads(out)["valid"] is True

    def test_audit_detects_tampering(self, capsys, tmp_path):
        export = tmp_path / "audit.json"
        _run(capsys, "demo", "--export", str(export))
        document = json.loads(export.read_text(encoding="utf-8"))
        document["records"][-1]["event"]["product_id"] = 2
        export.write_text(json.dumps(document), encoding="utf-8")

        code, out, _ = _run(capsys, "audit", "verify", str(export))
        assert code == 1
        assert json.loads(out)["valid"] is False

    def test_audit_missing_file(self, capsys, tmp_path):
        code, _, err = _run(capsys, "audit", "verify", str(tmp_path / "nope.json"))
        assert code == 1
        assert "File not found" in err

    def test_audit_not_json(self, capsys, tmp_path):
        path = tmp_path / "audit.json"
        path.write_text("{not json", encoding="utf-8")
        code, _, err = _run(capsys, "audit", "verify", str(path))
        assert code == 1
        assert "Not valid JSON" in err


class TestParser:

    def test_no_command_prints_help(self, capsys):
        code, out, _ = _run(capsys)
        assert code == 0
        assert "pharmachain" in out

    def test_missing_subcommand(self, capsys):
        code, _, err = _run(capsys, "audit")
        assert code == 2
        assert "Unknown command: audit" in err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            PharmaChainCLI().run(["--version"])
        assert exc_info.value.code == 0
