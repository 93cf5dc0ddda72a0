"""Merge instructions - review and merge commands for a worktree swarm's branches."""

import json
from typing import Optional

from ..registry.models import SwarmRecord, TaskRecord, TaskStatus

MERGE_WARNING = "IMPORTANT: Verify each branch has actual changes before merging"


def files_modified(task: TaskRecord) -> list[str]:
	"""Files the worker reported, read back from the stored structured result."""
	if not task.result:
		return []
	try:
		data = json.loads(task.result)
	except json.JSONDecodeError:
		return []
	files = data.get("files_modified") if isinstance(data, dict) else None
	return [str(f) for f in files] if isinstance(files, list) else []


def has_no_changes(task: TaskRecord) -> bool:
	"""Completed, but the divergence check found no commits on the branch."""
	return task.status == TaskStatus.COMPLETED and task.commits == 0


def build_merge_instructions(record: SwarmRecord) -> Optional[str]:
	"""
	Markdown report telling the caller how to review and merge task branches.

	Completed tasks whose branch carries commits (or could not be checked)
	get review and merge commands. Completed tasks with zero commits are
	listed separately, as are failed tasks.

	Returns:
		The report, or None when no task ran on its own branch
	"""
	branched = [t for t in record.tasks if t.branch]
	if not branched:
		return None

	mergeable = [t for t in branched if t.status == TaskStatus.COMPLETED and not has_no_changes(t)]
	unchanged = [t for t in branched if has_no_changes(t)]
	failed = [t for t in branched if t.status == TaskStatus.FAILED]

	lines = [
		MERGE_WARNING,
		"",
		f"## Swarm Results: {len(mergeable)}/{len(branched)} succeeded",
	]

	if mergeable:
		lines += ["", "### Merge completed branches", "```bash", "# Review each branch before merging"]
		for task in mergeable:
			base = task.base_branch or "HEAD"
			lines.append(f"git diff --stat {base}..{task.branch}  # {task.task_id}")
			lines.append(f"git log --oneline {base}..{task.branch}  # {task.task_id}")
		lines += ["", "# Then merge"]
		for task in mergeable:
			lines.append(f'git merge --no-ff {task.branch} -m "swarm: merge {task.task_id}"')
		lines.append("```")

	if unchanged:
		lines += ["", "### No Changes Detected"]
		for task in unchanged:
			lines.append(f"- {task.task_id} (`{task.branch}`) reported complete but has no commits")

	if failed:
		lines += ["", "### Failed tasks"]
		for task in failed:
			lines.append(f"- {task.task_id} (`{task.branch}`): {task.error or 'unknown'}")

	if mergeable:
		lines += ["", "### Files modified per branch"]
		for task in mergeable:
			lines.append(f"**{task.task_id}**:")
			files = files_modified(task)
			if files:
				lines += [f"  - {f}" for f in files]
			else:
				lines.append("  (none reported)")

	return "\n".join(lines)
