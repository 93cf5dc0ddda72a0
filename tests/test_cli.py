"""Tests for the CLI module."""

import asyncio
import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from swarm_dispatch.cli import _parse_args_pairs, build_parser, main
from swarm_dispatch.config import reset_config
from swarm_dispatch.registry.models import TaskStatus
from swarm_dispatch.registry.session_plans import register_plan
from swarm_dispatch.registry.swarm_records import record_swarm

from .helpers import make_swarm_record, write_plan


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path):
	"""Keep config and logs under tmp_path and drop the cached config."""
	with patch.dict(os.environ, {
		"SWARM_DISPATCH_CONFIG_DIR": str(tmp_path / "config"),
		"SWARM_DISPATCH_DATA_DIR": str(tmp_path / "data"),
	}):
		reset_config()
		yield
	reset_config()


@pytest.fixture
def project(tmp_path: Path) -> Path:
	path = tmp_path / "project"
	path.mkdir()
	return path


def run_cli(*argv: str) -> int:
	"""Run main() and return its exit code (0 when it returns normally)."""
	try:
		main(list(argv))
	except SystemExit as e:
		return e.code if isinstance(e.code, int) else 1
	return 0


class TestParser:
	"""Argument parsing."""

	def test_no_command_prints_help(self, capsys):
		assert run_cli() == 1
		assert "swarm-dispatch" in capsys.readouterr().out

	def test_check_args(self):
		args = build_parser().parse_args(["check", "read", "--arg", "filePath=a.env", "--json"])
		assert args.tool == "read"
		assert args.arg == ["filePath=a.env"]
		assert args.json is True

	def test_parse_args_pairs(self):
		assert _parse_args_pairs(["command=rm -rf x", "cwd=/tmp"]) == {"command": "rm -rf x", "cwd": "/tmp"}
		with pytest.raises(SystemExit) as exc:
			_parse_args_pairs(["novalue"])
		assert exc.value.code == 2


class TestPlansAndClean:
	"""plans / clean."""

	def test_plans(self, project: Path, capsys):
		write_plan(project, "auth")
		write_plan(project, "db")
		asyncio.run(register_plan(project, "ses_auth000", "auth"))

		assert run_cli("plans", "--project", str(project)) == 0
		out = capsys.readouterr().out
		assert "auth" in out
		assert "created" in out
		assert "untracked" in out

	def test_clean(self, project: Path, capsys):
		write_plan(project, "auth")
		assert run_cli("clean", "--project", str(project)) == 0
		assert "Deleted 1 file(s)" in capsys.readouterr().out
		assert not (project / ".ai" / "plan-auth.md").exists()


class TestDispatch:
	"""dispatch exit codes."""

	def test_ready(self, project: Path, capsys):
		write_plan(project, "auth")
		write_plan(project, "db")
		assert run_cli("dispatch", "auth", "db", "--project", str(project)) == 0
		assert '"taskId": "db"' in capsys.readouterr().out

	def test_missing(self, project: Path, capsys):
		write_plan(project, "auth")
		assert run_cli("dispatch", "auth", "nope", "--project", str(project)) == 1
		assert "nope" in capsys.readouterr().out

	def test_invalid_names(self, project: Path):
		assert run_cli("dispatch", "../etc", "--project", str(project)) == 1


class TestSwarms:
	"""swarms list / detail."""

	def test_list_and_detail(self, project: Path, capsys):
		record = make_swarm_record("swarm-abc", [TaskStatus.COMPLETED, TaskStatus.FAILED])
		asyncio.run(record_swarm(project, record))

		assert run_cli("swarms", "--project", str(project)) == 0
		assert "swarm-ab" in capsys.readouterr().out

		assert run_cli("swarms", "swarm-abc", "--project", str(project)) == 0
		out = capsys.readouterr().out
		assert "t1" in out
		assert "t2" in out

	def test_unknown_swarm(self, project: Path, capsys):
		assert run_cli("swarms", "missing", "--project", str(project)) == 1
		assert "No swarm found" in capsys.readouterr().out


class TestCheck:
	"""check verdicts."""

	def test_rejected_json(self, project: Path, capsys):
		code = run_cli("check", "sandbox_exec", "--arg", "command=rm -rf src", "--json", "--project", str(project))
		assert code == 1
		data = json.loads(capsys.readouterr().out)
		assert data["decision"] == "rejected"
		assert data["guard"] == "destructive_command"

	def test_allowed(self, project: Path, capsys):
		assert run_cli("check", "read", "--arg", "filePath=src/app.py", "--project", str(project)) == 0
		assert "allowed" in capsys.readouterr().out.lower()

	def test_secret_file(self, project: Path, capsys):
		code = run_cli("check", "read", "--arg", "filePath=.env", "--json", "--project", str(project))
		assert code == 1
		assert json.loads(capsys.readouterr().out)["guard"] == "secret_file"


class TestDoctor:
	"""doctor."""

	def test_reports_unreachable_opencode(self, project: Path, capsys):
		with patch("swarm_dispatch.cli._check_opencode", return_value=("unreachable", "not reachable")), \
			patch("swarm_dispatch.cli._check_server_startup", return_value=("OK (10 tools registered)", None)):
			assert run_cli("doctor", "--project", str(project)) == 1
		out = capsys.readouterr().out
		assert "Core deps:" in out
		assert "not reachable" in out

	def test_all_checks_pass(self, project: Path, capsys):
		with patch("swarm_dispatch.cli._check_opencode", return_value=("reachable", None)), \
			patch("swarm_dispatch.cli._check_server_startup", return_value=("OK (10 tools registered)", None)):
			assert run_cli("doctor", "--project", str(project)) == 0
		assert "All checks passed." in capsys.readouterr().out
