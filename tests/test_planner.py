"""Tests for the dispatch planner - plan batch validation and task parsing."""

import asyncio
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from swarm_dispatch.registry.models import PlanStatus
from swarm_dispatch.registry.session_plans import register_plan, update_plan_status
from swarm_dispatch.swarm.planner import (
	MAX_TASKS,
	AgentTask,
	DispatchOutcome,
	PlanReference,
	TaskInputError,
	check_plan_artifacts,
	parse_task_input,
	parse_task_lines,
	parse_tasks_json,
	plan_dispatch,
	read_plan_content,
	split_plan_names,
)

from .helpers import write_plan


class TestSplitPlanNames:
	"""Name tokenizing."""

	def test_whitespace_and_duplicates(self):
		assert split_plan_names("  auth   db\tauth\n") == ["auth", "db"]

	def test_list_input(self):
		assert split_plan_names(["auth db", "cache"]) == ["auth", "db", "cache"]

	def test_none(self):
		assert split_plan_names(None) == []


class TestPlanDispatchValidation:
	"""Validation order: format, count, existence."""

	@pytest.mark.asyncio
	async def test_invalid_name_checked_before_existence(self, tmp_path: Path):
		"""Bad-Name is rejected for format even though good-plan exists."""
		write_plan(tmp_path, "good-plan")
		result = await plan_dispatch(tmp_path, "Bad-Name good-plan")
		assert result.outcome == DispatchOutcome.INVALID_NAMES
		assert result.invalid_names == ["Bad-Name"]
		assert result.missing_plans == []
		assert "Bad-Name" in result.render()

	@pytest.mark.asyncio
	async def test_path_traversal_rejected(self, tmp_path: Path):
		result = await plan_dispatch(tmp_path, "../etc/passwd auth")
		assert result.outcome == DispatchOutcome.INVALID_NAMES
		assert result.invalid_names == ["../etc/passwd"]

	@pytest.mark.asyncio
	async def test_single_plan_redirects(self, tmp_path: Path):
		"""One name is not a batch; the message names /synth."""
		write_plan(tmp_path, "auth")
		result = await plan_dispatch(tmp_path, "auth")
		assert result.outcome == DispatchOutcome.SINGLE_PLAN
		assert "/synth auth" in result.render()

	@pytest.mark.asyncio
	async def test_all_missing_plans_reported(self, tmp_path: Path):
		"""Five names, two missing: exactly those two are listed."""
		for name in ("alpha", "gamma", "epsilon"):
			write_plan(tmp_path, name)
		result = await plan_dispatch(tmp_path, "alpha beta gamma delta epsilon")
		assert result.outcome == DispatchOutcome.MISSING_PLANS
		assert result.missing_plans == ["beta", "delta"]
		rendered = result.render()
		assert ".ai/plan-beta.md" in rendered
		assert ".ai/plan-delta.md" in rendered
		assert "alpha" not in rendered

	@pytest.mark.asyncio
	async def test_missing_report_independent_of_completion_order(self, tmp_path: Path):
		"""Checks that finish out of order still report in name order."""
		write_plan(tmp_path, "a1")
		write_plan(tmp_path, "a3")
		real_to_thread = asyncio.to_thread
		delays = {"a1": 0.03, "a2": 0.0, "a3": 0.01, "a4": 0.02}

		async def slow_to_thread(fn, *args, **kwargs):
			name = Path(getattr(fn, "__self__", "")).name[len("plan-"):-len(".md")]
			await asyncio.sleep(delays.get(name, 0.0))
			return await real_to_thread(fn, *args, **kwargs)

		with patch("swarm_dispatch.swarm.planner.asyncio.to_thread", side_effect=slow_to_thread):
			present, missing = await check_plan_artifacts(tmp_path, ["a1", "a2", "a3", "a4"])
		assert present == ["a1", "a3"]
		assert missing == ["a2", "a4"]

	@pytest.mark.asyncio
	async def test_ready_payload(self, tmp_path: Path):
		"""auth + db both exist: payload lists both tasks and both artifacts."""
		write_plan(tmp_path, "auth")
		write_plan(tmp_path, "db")
		result = await plan_dispatch(tmp_path, "auth db")
		assert result.ok
		assert result.payload == [
			{"taskId": "auth", "planFile": ".ai/plan-auth.md"},
			{"taskId": "db", "planFile": ".ai/plan-db.md"},
		]
		rendered = result.render()
		assert "missing" not in rendered.lower()
		assert json.dumps(result.payload, indent=2) in rendered


class TestAutoDiscovery:
	"""No names: pick every plan not yet executed."""

	@pytest.mark.asyncio
	async def test_usage_when_nothing_found(self, tmp_path: Path):
		result = await plan_dispatch(tmp_path, "")
		assert result.outcome == DispatchOutcome.USAGE
		assert "Usage" in result.render()

	@pytest.mark.asyncio
	async def test_skips_executed_plans(self, tmp_path: Path):
		for name in ("auth", "db", "cache"):
			write_plan(tmp_path, name)
		await register_plan(tmp_path, "ses_cache00", "cache")
		await update_plan_status(tmp_path, "ses_cache00", PlanStatus.EXECUTED)

		result = await plan_dispatch(tmp_path)
		assert result.ok
		assert result.discovered is True
		assert [p.task_id for p in result.plans] == ["auth", "db"]
		assert "[AUTO-DISCOVERY]" in result.render()

	@pytest.mark.asyncio
	async def test_single_discovered_plan_redirects(self, tmp_path: Path):
		write_plan(tmp_path, "only")
		result = await plan_dispatch(tmp_path)
		assert result.outcome == DispatchOutcome.SINGLE_PLAN

	@pytest.mark.asyncio
	async def test_discovered_names_are_validated(self, tmp_path: Path):
		"""An artifact with an unsafe name is caught by the format check."""
		write_plan(tmp_path, "Upper")
		write_plan(tmp_path, "fine")
		result = await plan_dispatch(tmp_path)
		assert result.outcome == DispatchOutcome.INVALID_NAMES
		assert result.invalid_names == ["Upper"]


class TestParseTasksJson:
	"""JSON task arrays."""

	def test_valid(self):
		tasks = parse_tasks_json(json.dumps([
			{"id": "t1", "agent": "implementer", "prompt": "Do X"},
			{"id": "t2", "agent": "operator", "prompt": "Do Y", "description": "y", "worktree": True},
		]))
		assert [t.id for t in tasks] == ["t1", "t2"]
		assert tasks[1].worktree is True

	def test_not_json(self):
		with pytest.raises(TaskInputError):
			parse_tasks_json("[nope")

	def test_not_array(self):
		with pytest.raises(TaskInputError, match="array"):
			parse_tasks_json('{"id": "t1"}')

	def test_every_problem_listed(self):
		"""Bad id, empty prompt and duplicate ids are all reported."""
		with pytest.raises(TaskInputError) as exc:
			parse_tasks_json(json.dumps([
				{"id": "bad id!", "agent": "a", "prompt": "p"},
				{"id": "t2", "agent": "a", "prompt": ""},
				{"id": "t3", "agent": "a", "prompt": "p"},
				{"id": "t3", "agent": "a", "prompt": "p"},
			]))
		problems = exc.value.problems
		assert any(p.startswith("task[0].id") for p in problems)
		assert any(p.startswith("task[1].prompt") for p in problems)
		assert "duplicate task id 't3'" in problems

	def test_empty_array(self):
		with pytest.raises(TaskInputError, match="at least one task"):
			parse_tasks_json("[]")

	def test_too_many_tasks(self):
		data = [{"id": f"t{i}", "agent": "a", "prompt": "p"} for i in range(MAX_TASKS + 1)]
		with pytest.raises(TaskInputError, match="at most"):
			parse_tasks_json(json.dumps(data))


class TestParseTaskLines:
	"""agent: prompt lines."""

	def test_lines(self):
		tasks = parse_task_lines("# comment\nimplementer: build auth\n\noperator: run migrations: now\n")
		assert [(t.id, t.agent, t.prompt) for t in tasks] == [
			("task-1", "implementer", "build auth"),
			("task-2", "operator", "run migrations: now"),
		]

	def test_malformed_line(self):
		with pytest.raises(TaskInputError) as exc:
			parse_task_lines("implementer: ok\njust some words\n")
		assert exc.value.problems[0].startswith("line 2")

	def test_dispatch_by_prefix(self):
		"""parse_task_input picks JSON for arrays and lines otherwise."""
		assert parse_task_input('  [{"id": "a", "agent": "x", "prompt": "y"}]')[0].id == "a"
		assert parse_task_input("x: y")[0].id == "task-1"


class TestAgentTask:
	"""Field limits."""

	def test_id_pattern(self):
		AgentTask(id="ok_id-1", agent="a", prompt="p")
		with pytest.raises(ValueError):
			AgentTask(id="has space", agent="a", prompt="p")

	def test_prompt_limit(self):
		with pytest.raises(ValueError):
			AgentTask(id="t", agent="a", prompt="x" * 100_001)


def test_read_plan_content(tmp_path: Path):
	write_plan(tmp_path, "auth", "# Auth plan\n")
	assert read_plan_content(tmp_path, PlanReference("auth", ".ai/plan-auth.md")) == "# Auth plan\n"
