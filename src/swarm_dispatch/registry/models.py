"""
Registry Models - Pydantic schemas for the on-disk plan and swarm registries.

Field names are snake_case in Python and camelCase on disk, so the JSON
files stay readable by any other tool that shares the project's .ai/ dir.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> str:
	"""Current time as an ISO-8601 UTC timestamp."""
	return datetime.now(timezone.utc).isoformat()


def safe_timestamp(value: Optional[str]) -> float:
	"""Parse an ISO timestamp to epoch seconds, returning 0.0 for anything invalid."""
	if not value or not isinstance(value, str):
		return 0.0
	try:
		parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
	except ValueError:
		return 0.0
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed.timestamp()


class RegistryModel(BaseModel):
	"""Base for records persisted with camelCase keys."""
	model_config = ConfigDict(
		alias_generator=to_camel,
		populate_by_name=True,
		use_enum_values=False,
	)

	def to_json_dict(self) -> dict:
		"""Serialize for the registry file."""
		return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlanStatus(str, Enum):
	"""Lifecycle status of a plan artifact."""
	CREATED = "created"
	REVIEWED = "reviewed"
	EXECUTED = "executed"
	FAILED = "failed"


class PlanRecord(RegistryModel):
	"""Registry entry for the plan a session authored or is executing."""
	plan: str = Field(description="Plan name; backing artifact is .ai/plan-<name>.md")
	created_at: str = Field(default_factory=utc_now)
	status: PlanStatus = Field(default=PlanStatus.CREATED)


class PlanListing(PlanRecord):
	"""A registry entry plus its key and whether the artifact still exists."""
	session_key: str
	file_exists: bool


class TaskStatus(str, Enum):
	"""Status of a single delegated task."""
	PENDING = "pending"
	RUNNING = "running"
	COMPLETED = "completed"
	FAILED = "failed"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class SwarmStatus(str, Enum):
	"""Aggregate status of a swarm, derived from its tasks."""
	RUNNING = "running"
	COMPLETED = "completed"
	FAILED = "failed"
	PARTIAL = "partial"


class TaskRecord(RegistryModel):
	"""One delegated unit of work inside a swarm."""
	task_id: str
	agent: str
	status: TaskStatus = Field(default=TaskStatus.PENDING)
	result: Optional[str] = Field(default=None, description="Structured JSON or raw worker text")
	error: Optional[str] = Field(default=None)
	session_id: Optional[str] = Field(default=None)
	worktree_path: Optional[str] = Field(default=None)
	branch: Optional[str] = Field(default=None)
	base_branch: Optional[str] = Field(default=None)
	commits: Optional[int] = Field(default=None, description="Commits on branch beyond base_branch")
	tip_sha: Optional[str] = Field(default=None)
	started_at: Optional[str] = Field(default=None)
	completed_at: Optional[str] = Field(default=None)


class SwarmRecord(RegistryModel):
	"""One batch dispatch. The task list is fixed at creation."""
	swarm_id: str
	created_at: str = Field(default_factory=utc_now)
	completed_at: Optional[str] = Field(default=None)
	status: SwarmStatus = Field(default=SwarmStatus.RUNNING)
	task_count: int = 0
	worktrees_enabled: bool = False
	tasks: list[TaskRecord] = Field(default_factory=list)

	def get_task(self, task_id: str) -> Optional[TaskRecord]:
		"""Find a task by id."""
		for task in self.tasks:
			if task.task_id == task_id:
				return task
		return None


class SwarmSummary(BaseModel):
	"""Count rollup of a swarm's tasks. `pending` counts every non-terminal task."""
	completed: int
	failed: int
	pending: int
	total: int
