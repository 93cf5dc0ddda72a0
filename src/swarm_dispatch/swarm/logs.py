"""Per-task execution logs under .ai/swarm-logs/."""

import logging
from pathlib import Path
from typing import Optional

from ..registry.models import TaskRecord, utc_now
from ..registry.store import PathLike, ai_dir

logger = logging.getLogger(__name__)

LOGS_DIR = "swarm-logs"


def task_log_path(directory: PathLike, swarm_id: str, task_id: str) -> Path:
	"""Where a task's log lives."""
	return ai_dir(directory) / LOGS_DIR / f"{swarm_id[:8]}-{task_id}.log"


def format_task_log(swarm_id: str, task: TaskRecord, raw_output: Optional[str] = None) -> str:
	"""Human-readable log body for a finished task."""
	lines = [
		f"# Swarm Task Log: {task.task_id}",
		f"# Generated: {utc_now()}",
		"",
		f"Swarm ID:     {swarm_id}",
		f"Task ID:      {task.task_id}",
		f"Agent:        {task.agent}",
		f"Status:       {task.status.value}",
		f"Session ID:   {task.session_id or '-'}",
		f"Started At:   {task.started_at or '-'}",
		f"Completed At: {task.completed_at or '-'}",
	]
	if task.branch:
		lines.append(f"Branch:       {task.branch}")
	if task.worktree_path:
		lines.append(f"Worktree:     {task.worktree_path}")

	if task.error:
		lines += ["", "## Error", task.error]
	if task.result:
		lines += ["", "## Result", task.result]
	if raw_output and raw_output != task.result:
		lines += ["", "## Raw Output", raw_output]
	return "\n".join(lines) + "\n"


def write_task_log(
	directory: PathLike,
	swarm_id: str,
	task: TaskRecord,
	raw_output: Optional[str] = None,
) -> Optional[Path]:
	"""
	Write the log for a finished task.

	Returns:
		The log path, or None if it could not be written
	"""
	path = task_log_path(directory, swarm_id, task.task_id)
	try:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(format_task_log(swarm_id, task, raw_output), encoding="utf-8")
	except OSError as e:
		logger.warning(f"Could not write task log {path}: {e}")
		return None
	return path
