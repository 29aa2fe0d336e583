"""Tests for the command-line interface."""

import json

from click.testing import CliRunner

from ppgvitals.cli import main


def _json_lines(text):
	return [json.loads(line) for line in text.splitlines() if line.startswith("{")]


class TestConfigCommands:
	def test_show(self):
		result = CliRunner().invoke(main, ["config", "show"])
		assert result.exit_code == 0
		data = json.loads(result.stdout)
		assert data["session"]["evaluation_interval_ms"] == 500

	def test_show_section(self):
		result = CliRunner().invoke(main, ["config", "show", "--section", "feedback"])
		assert result.exit_code == 0
		assert json.loads(result.stdout)["throttle_ms"] == 1000

	def test_show_unknown_section(self):
		result = CliRunner().invoke(main, ["config", "show", "--section", "nope"])
		assert result.exit_code == 1

	def test_validate_ok(self, tmp_path):
		path = tmp_path / "ok.json"
		path.write_text(json.dumps({"session": {"evaluation_interval_ms": 1000}}))
		result = CliRunner().invoke(main, ["config", "validate", str(path)])
		assert result.exit_code == 0
		assert "Valid" in result.stdout

	def test_validate_errors(self, tmp_path):
		path = tmp_path / "bad.json"
		path.write_text(json.dumps({"session": {"evaluation_interval_ms": 10}}))
		result = CliRunner().invoke(main, ["config", "validate", str(path)])
		assert result.exit_code == 1

	def test_validate_malformed(self, tmp_path):
		path = tmp_path / "broken.json"
		path.write_text("{not json")
		result = CliRunner().invoke(main, ["config", "validate", str(path)])
		assert result.exit_code == 1


class TestSimulate:
	def test_json_output(self):
		result = CliRunner().invoke(main, ["simulate", "--duration", "3", "--seed", "1", "--json"])
		assert result.exit_code == 0
		lines = _json_lines(result.stdout)
		assert len(lines) == 6
		assert "heart_rate" in lines[-1]

	def test_reference_parsing(self):
		result = CliRunner().invoke(main, ["simulate", "--duration", "1", "--json", "--reference", "systolic"])
		assert result.exit_code != 0

	def test_live_table(self):
		result = CliRunner().invoke(main, ["simulate", "--duration", "2", "--seed", "2"])
		assert result.exit_code == 0
		assert "Done!" in result.stdout
