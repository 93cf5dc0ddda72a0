"""
Dispatch Planner - validates batch requests before anything is dispatched.

Two kinds of input:
- Plan names (explicit, or auto-discovered from .ai/plan-*.md) for /dispatch
- Free-form tasks: a JSON array of task objects or "agent: prompt" lines

Plan-name validation runs in a fixed order and stops at the first failing
step: name format, then batch size, then artifact existence. The existence
checks run concurrently and every missing plan is reported together.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..registry.models import PlanStatus
from ..registry.session_plans import plan_statuses
from ..registry.store import AI_DIR, SAFE_PLAN_NAME, PathLike, list_plan_artifacts, plan_artifact_path

logger = logging.getLogger(__name__)

MIN_BATCH_PLANS = 2
MAX_TASKS = 50

SINGLE_PLAN_COMMAND = "/synth"


# =============================================================================
# Plan dispatch
# =============================================================================

class DispatchOutcome(str, Enum):
	"""How a plan dispatch request resolved."""
	USAGE = "usage"
	SINGLE_PLAN = "single_plan"
	INVALID_NAMES = "invalid_names"
	MISSING_PLANS = "missing_plans"
	READY = "ready"


@dataclass
class PlanReference:
	"""A validated plan ready for dispatch."""
	task_id: str
	plan_file: str

	def to_payload(self) -> dict[str, str]:
		return {"taskId": self.task_id, "planFile": self.plan_file}


@dataclass
class DispatchResult:
	"""Outcome of plan_dispatch(); only READY carries plans."""
	outcome: DispatchOutcome
	names: list[str] = field(default_factory=list)
	plans: list[PlanReference] = field(default_factory=list)
	invalid_names: list[str] = field(default_factory=list)
	missing_plans: list[str] = field(default_factory=list)
	discovered: bool = False

	@property
	def ok(self) -> bool:
		return self.outcome == DispatchOutcome.READY

	@property
	def payload(self) -> list[dict[str, str]]:
		"""The [{taskId, planFile}] list handed to the dispatch tool."""
		return [plan.to_payload() for plan in self.plans]

	def render(self) -> str:
		"""Markdown message for the command surface."""
		if self.outcome == DispatchOutcome.USAGE:
			return (
				f"No unimplemented plans found in `{AI_DIR}/`.\n\n"
				"Usage: `/dispatch <plan> <plan> [...]`, or run `/dispatch` with no arguments "
				"to pick up every plan not yet executed.\n"
				"Use `/plans` to see all plan statuses."
			)

		if self.outcome == DispatchOutcome.SINGLE_PLAN:
			name = self.names[0] if self.names else "<name>"
			return (
				f"Only 1 plan to dispatch: **{name}**\n\n"
				f"Swarm dispatch requires at least {MIN_BATCH_PLANS} plans. "
				f"For a single plan, use `{SINGLE_PLAN_COMMAND} {name}` instead."
			)

		if self.outcome == DispatchOutcome.INVALID_NAMES:
			listing = "\n".join(f"  - `{name}`" for name in self.invalid_names)
			return (
				f"Invalid plan name(s):\n{listing}\n\n"
				"Plan names must be lowercase alphanumeric with hyphens (e.g. `auth-module`)."
			)

		if self.outcome == DispatchOutcome.MISSING_PLANS:
			listing = "\n".join(f"  - `{plan_file_for(name)}`" for name in self.missing_plans)
			return (
				f"Cannot dispatch, missing plan files:\n{listing}\n\n"
				"Write the plans first, or check names with `/plans`."
			)

		lines = []
		if self.discovered:
			lines.append(f"[AUTO-DISCOVERY] Found {len(self.plans)} unimplemented plans:")
			lines.extend(f"  - {plan.task_id}" for plan in self.plans)
			lines.append("")
		lines.append(f"[DISPATCH] Resolved {len(self.plans)} plans for parallel execution:")
		lines.append("")
		lines.extend(f"- **{plan.task_id}** -> `{plan.plan_file}`" for plan in self.plans)
		lines.append("")
		lines.append("## Dispatch Payload")
		lines.append("")
		lines.append("```json")
		lines.append(json.dumps(self.payload, indent=2))
		lines.append("```")
		lines.append("")
		lines.append("Call the `swarm_dispatch_plans` tool with these plan names to begin parallel execution.")
		return "\n".join(lines)


def plan_file_for(name: str) -> str:
	"""Project-relative artifact path for a plan name."""
	return f"{AI_DIR}/plan-{name}.md"


def split_plan_names(raw: Union[str, list[str], None]) -> list[str]:
	"""Whitespace-split names, dropping blanks and duplicates (first wins)."""
	if raw is None:
		return []
	tokens = raw.split() if isinstance(raw, str) else [t for item in raw for t in str(item).split()]
	seen: set[str] = set()
	names = []
	for token in tokens:
		if token not in seen:
			seen.add(token)
			names.append(token)
	return names


async def discover_dispatchable_plans(directory: PathLike) -> list[str]:
	"""Plan artifacts whose latest registry status is not executed."""
	names = await asyncio.to_thread(list_plan_artifacts, directory)
	if not names:
		return []
	statuses = await plan_statuses(directory)
	return [name for name in names if statuses.get(name) != PlanStatus.EXECUTED]


async def check_plan_artifacts(directory: PathLike, names: list[str]) -> tuple[list[str], list[str]]:
	"""
	Check every artifact concurrently.

	Returns:
		(present, missing), each in the order of `names`
	"""
	async def exists(name: str) -> bool:
		return await asyncio.to_thread(plan_artifact_path(directory, name).is_file)

	results = await asyncio.gather(*(exists(name) for name in names))
	present = [name for name, ok in zip(names, results) if ok]
	missing = [name for name, ok in zip(names, results) if not ok]
	return present, missing


async def plan_dispatch(directory: PathLike, names: Union[str, list[str], None] = None) -> DispatchResult:
	"""
	Resolve a batch of plan names into a dispatch payload.

	Args:
		directory: Project root
		names: Plan names (string or list). Empty means auto-discovery.

	Returns:
		DispatchResult tagged with the outcome
	"""
	requested = split_plan_names(names)
	discovered = not requested
	if discovered:
		requested = await discover_dispatchable_plans(directory)
		if not requested:
			return DispatchResult(outcome=DispatchOutcome.USAGE, discovered=True)

	invalid = [name for name in requested if not SAFE_PLAN_NAME.match(name)]
	if invalid:
		logger.info(f"Dispatch rejected, invalid plan names: {', '.join(invalid)}")
		return DispatchResult(
			outcome=DispatchOutcome.INVALID_NAMES,
			names=requested,
			invalid_names=invalid,
			discovered=discovered,
		)

	if len(requested) < MIN_BATCH_PLANS:
		return DispatchResult(
			outcome=DispatchOutcome.SINGLE_PLAN,
			names=requested,
			discovered=discovered,
		)

	present, missing = await check_plan_artifacts(directory, requested)
	if missing:
		logger.info(f"Dispatch rejected, missing plans: {', '.join(missing)}")
		return DispatchResult(
			outcome=DispatchOutcome.MISSING_PLANS,
			names=requested,
			missing_plans=missing,
			discovered=discovered,
		)

	return DispatchResult(
		outcome=DispatchOutcome.READY,
		names=requested,
		plans=[PlanReference(task_id=name, plan_file=plan_file_for(name)) for name in present],
		discovered=discovered,
	)


# =============================================================================
# Free-form tasks
# =============================================================================

class AgentTask(BaseModel):
	"""A unit of work for one worker persona."""
	id: str = Field(min_length=1, max_length=256, pattern=r"^[a-zA-Z0-9_-]+$")
	agent: str = Field(min_length=1, max_length=256)
	prompt: str = Field(min_length=1, max_length=100_000)
	description: Optional[str] = Field(default=None, max_length=1024)
	worktree: Optional[bool] = Field(
		default=None,
		description="Override the swarm-level worktree setting for this task",
	)


class TaskInputError(ValueError):
	"""Task input could not be turned into a valid batch."""

	def __init__(self, problems: list[str]):
		self.problems = problems
		super().__init__("Invalid tasks input:\n" + "\n".join(f"- {p}" for p in problems))


def _check_batch(tasks: list[AgentTask], problems: list[str]) -> None:
	if not tasks and not problems:
		problems.append("at least one task is required")
	if len(tasks) > MAX_TASKS:
		problems.append(f"at most {MAX_TASKS} tasks per swarm (got {len(tasks)})")
	seen: set[str] = set()
	for task in tasks:
		if task.id in seen:
			problems.append(f"duplicate task id '{task.id}'")
		seen.add(task.id)


def parse_tasks_json(text: str) -> list[AgentTask]:
	"""
	Parse a JSON array of task objects.

	Raises:
		TaskInputError: listing every problem found
	"""
	try:
		data = json.loads(text)
	except json.JSONDecodeError as e:
		raise TaskInputError([f"tasks is not valid JSON: {e}"]) from e
	if not isinstance(data, list):
		raise TaskInputError(["tasks must be a JSON array"])

	tasks: list[AgentTask] = []
	problems: list[str] = []
	for index, item in enumerate(data):
		try:
			tasks.append(AgentTask.model_validate(item))
		except ValidationError as e:
			for err in e.errors():
				where = ".".join(str(p) for p in err["loc"]) or "task"
				problems.append(f"task[{index}].{where}: {err['msg']}")

	_check_batch(tasks, problems)
	if problems:
		raise TaskInputError(problems)
	return tasks


def parse_task_lines(text: str) -> list[AgentTask]:
	"""
	Parse one "agent: prompt" task per line.

	Blank lines and lines starting with # are skipped. Task ids are
	assigned as task-1, task-2, ... in line order.

	Raises:
		TaskInputError: listing every problem found
	"""
	tasks: list[AgentTask] = []
	problems: list[str] = []
	for lineno, line in enumerate(text.splitlines(), start=1):
		stripped = line.strip()
		if not stripped or stripped.startswith("#"):
			continue
		agent, sep, prompt = stripped.partition(":")
		agent, prompt = agent.strip(), prompt.strip()
		if not sep or not agent or not prompt:
			problems.append(f"line {lineno}: expected 'agent: prompt', got {stripped[:60]!r}")
			continue
		try:
			tasks.append(AgentTask(id=f"task-{len(tasks) + 1}", agent=agent, prompt=prompt))
		except ValidationError as e:
			problems.append(f"line {lineno}: {e.errors()[0]['msg']}")

	_check_batch(tasks, problems)
	if problems:
		raise TaskInputError(problems)
	return tasks


def parse_task_input(text: str) -> list[AgentTask]:
	"""JSON array when the input starts with '[', otherwise task lines."""
	if text.lstrip().startswith("["):
		return parse_tasks_json(text)
	return parse_task_lines(text)


def read_plan_content(directory: PathLike, plan: PlanReference) -> str:
	"""Contents of a plan artifact."""
	return (Path(directory) / plan.plan_file).read_text(encoding="utf-8")
