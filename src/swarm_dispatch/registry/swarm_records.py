"""
Swarm Task Registry - durable state of every batch dispatch.

Stored as .ai/.swarm-records.json, keyed by swarm id. Each record carries a
fixed task list; only per-task fields and the derived aggregate status change
after creation.

Task state machine:
	pending -> running -> completed | failed
	pending -> completed | failed
Terminal states (completed, failed) are final. Late or duplicate updates to a
terminal task are ignored, never applied.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from .models import (
	TERMINAL_TASK_STATUSES,
	SwarmRecord,
	SwarmStatus,
	SwarmSummary,
	TaskRecord,
	TaskStatus,
	safe_timestamp,
	utc_now,
)
from .store import PathLike, RegistryStore

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".swarm-records.json"
DEFAULT_MAX_RECORDS = 100

swarm_registry = RegistryStore(REGISTRY_FILENAME)

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
	TaskStatus.PENDING: frozenset({
		TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.COMPLETED, TaskStatus.FAILED,
	}),
	TaskStatus.RUNNING: frozenset({TaskStatus.RUNNING, TaskStatus.COMPLETED, TaskStatus.FAILED}),
	TaskStatus.COMPLETED: frozenset(),
	TaskStatus.FAILED: frozenset(),
}

# Task fields an update may touch besides status
_MUTABLE_TASK_FIELDS = frozenset({
	"result", "error", "session_id", "worktree_path", "branch", "base_branch",
	"commits", "tip_sha", "started_at", "completed_at",
})


def is_task_terminal(task: TaskRecord) -> bool:
	"""True iff the task is completed or failed."""
	return task.status in TERMINAL_TASK_STATUSES


def is_swarm_complete(record: SwarmRecord) -> bool:
	"""True iff the swarm has tasks and every one of them is terminal."""
	return bool(record.tasks) and all(is_task_terminal(task) for task in record.tasks)


def derive_swarm_status(record: SwarmRecord) -> SwarmStatus:
	"""
	Aggregate status from the task statuses.

	running while any task is non-terminal (or there are no tasks), then
	completed if every task completed, failed if every task failed, and
	partial for a mix.
	"""
	if not is_swarm_complete(record):
		return SwarmStatus.RUNNING
	statuses = {task.status for task in record.tasks}
	if statuses == {TaskStatus.COMPLETED}:
		return SwarmStatus.COMPLETED
	if statuses == {TaskStatus.FAILED}:
		return SwarmStatus.FAILED
	return SwarmStatus.PARTIAL


def get_swarm_summary(record: SwarmRecord) -> SwarmSummary:
	"""Count rollup for reporting."""
	completed = sum(1 for task in record.tasks if task.status == TaskStatus.COMPLETED)
	failed = sum(1 for task in record.tasks if task.status == TaskStatus.FAILED)
	total = len(record.tasks)
	return SwarmSummary(
		completed=completed,
		failed=failed,
		pending=total - completed - failed,
		total=total,
	)


def refresh_swarm_status(record: SwarmRecord) -> SwarmRecord:
	"""Recompute the aggregate status and completion time in place."""
	record.status = derive_swarm_status(record)
	if record.status == SwarmStatus.RUNNING:
		record.completed_at = None
	elif record.completed_at is None:
		record.completed_at = utc_now()
	return record


def apply_task_update(
	record: SwarmRecord,
	task_id: str,
	status: TaskStatus,
	**fields,
) -> bool:
	"""
	Apply one task transition to an in-memory record.

	Args:
		record: Swarm to update (mutated in place)
		task_id: Task to update
		status: New status
		**fields: Other task fields to set (result, error, session_id, ...)

	Returns:
		True if applied; False for an unknown task or a disallowed transition
		(including any update to a terminal task)
	"""
	unknown = set(fields) - _MUTABLE_TASK_FIELDS
	if unknown:
		raise TypeError(f"Cannot update task field(s): {', '.join(sorted(unknown))}")

	task = record.get_task(task_id)
	if task is None:
		logger.debug(f"Swarm {record.swarm_id} has no task {task_id}")
		return False

	status = TaskStatus(status)
	if status not in _ALLOWED_TRANSITIONS[task.status]:
		logger.debug(
			f"Ignoring {task.status.value} -> {status.value} for task {task_id} in swarm {record.swarm_id}"
		)
		return False

	task.status = status
	for name, value in fields.items():
		setattr(task, name, value)
	if status == TaskStatus.RUNNING and task.started_at is None:
		task.started_at = utc_now()
	if status in TERMINAL_TASK_STATUSES and task.completed_at is None:
		task.completed_at = utc_now()

	refresh_swarm_status(record)
	return True


def _parse_record(key: str, value: object) -> Optional[SwarmRecord]:
	try:
		return SwarmRecord.model_validate(value)
	except ValidationError as e:
		logger.warning(f"Dropping malformed swarm record {key!r}: {e.error_count()} error(s)")
		return None


def _created_at(value: object) -> float:
	if isinstance(value, dict):
		return safe_timestamp(value.get("createdAt"))
	return 0.0


async def record_swarm(
	directory: PathLike,
	record: SwarmRecord,
	max_records: int = DEFAULT_MAX_RECORDS,
) -> SwarmRecord:
	"""
	Upsert a swarm record, then prune the oldest records beyond max_records.

	Records with an invalid createdAt count as the oldest possible.
	"""
	pruned: list[str] = []

	def mutate(data: dict) -> dict:
		data[record.swarm_id] = record.to_json_dict()
		excess = len(data) - max(max_records, 1)
		if excess > 0:
			oldest_first = sorted(data, key=lambda key: _created_at(data[key]))
			for key in oldest_first[:excess]:
				del data[key]
				pruned.append(key)
		return data

	await swarm_registry.aupdate(directory, mutate)
	if pruned:
		logger.info(f"Pruned {len(pruned)} old swarm record(s): {', '.join(pruned)}")
	logger.debug(f"Recorded swarm {record.swarm_id} ({record.status.value})")
	return record


async def lookup_swarm(directory: PathLike, swarm_id: str) -> Optional[SwarmRecord]:
	"""A swarm by id, or None."""
	raw = await swarm_registry.aread(directory)
	if swarm_id not in raw:
		return None
	return _parse_record(swarm_id, raw[swarm_id])


async def list_swarms(directory: PathLike) -> list[SwarmRecord]:
	"""Every swarm, newest first. Invalid timestamps sort last."""
	raw = await swarm_registry.aread(directory)
	records = [r for r in (_parse_record(k, v) for k, v in raw.items()) if r is not None]
	return sorted(records, key=lambda r: safe_timestamp(r.created_at), reverse=True)


async def update_task_status(
	directory: PathLike,
	swarm_id: str,
	task_id: str,
	status: TaskStatus,
	**fields,
) -> Optional[SwarmRecord]:
	"""
	Persist one task transition.

	Updates to a terminal task are silently ignored, so late or duplicate
	results cannot overwrite a resolved task.

	Returns:
		The updated record, or None when the swarm is unknown or the update
		was not applied
	"""
	applied: list[SwarmRecord] = []

	def mutate(data: dict) -> Optional[dict]:
		if swarm_id not in data:
			return None
		record = _parse_record(swarm_id, data[swarm_id])
		if record is None or not apply_task_update(record, task_id, status, **fields):
			return None
		data[swarm_id] = record.to_json_dict()
		applied.append(record)
		return data

	await swarm_registry.aupdate(directory, mutate)
	if not applied:
		return None
	record = applied[0]
	logger.info(f"Swarm {swarm_id}: task {task_id} -> {TaskStatus(status).value} (swarm {record.status.value})")
	return record
