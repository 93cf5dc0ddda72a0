"""Worktree isolation - one git worktree and branch per swarm task."""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "swarm"


class WorktreeError(RuntimeError):
	"""A git worktree operation failed."""
	pass


@dataclass
class TaskWorktree:
	"""A worktree created for a task."""
	task_id: str
	path: Path
	branch: str
	base_branch: str


async def run_git(args: list[str], cwd: Path, timeout: int = 30) -> tuple[str, str, int]:
	"""Run a git command and return (stdout, stderr, returncode)."""
	proc = await asyncio.create_subprocess_exec(
		"git", *args,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
		cwd=str(cwd),
	)
	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		proc.kill()
		await proc.wait()
		return ("", f"git {args[0]} timed out after {timeout}s", -1)
	return (
		stdout.decode().strip(),
		stderr.decode().strip(),
		proc.returncode or 0,
	)


async def current_branch(project_dir: Path) -> str:
	"""Branch checked out in the project (HEAD when detached)."""
	stdout, stderr, rc = await run_git(["rev-parse", "--abbrev-ref", "HEAD"], project_dir)
	if rc != 0:
		raise WorktreeError(f"Not a git repository: {project_dir} ({stderr})")
	return stdout


async def create_task_worktree(
	project_dir: Path,
	worktree_dir: Path,
	task_id: str,
	timestamp: Optional[int] = None,
) -> TaskWorktree:
	"""
	Create <worktree_dir>/<task_id> on a new branch swarm/<task_id>-<timestamp>.

	The branch starts from the project's current branch. When the directory
	is already taken by an earlier run, the timestamp is appended to it.

	Raises:
		WorktreeError: if the project is not a git repo or git refuses
	"""
	project_dir = Path(project_dir)
	stamp = timestamp if timestamp is not None else int(time.time() * 1000)
	branch = f"{BRANCH_PREFIX}/{task_id}-{stamp}"
	base_branch = await current_branch(project_dir)

	path = Path(worktree_dir) / task_id
	if path.exists():
		path = Path(worktree_dir) / f"{task_id}-{stamp}"
	path.parent.mkdir(parents=True, exist_ok=True)

	_, stderr, rc = await run_git(
		["worktree", "add", "-b", branch, str(path), base_branch],
		project_dir,
	)
	if rc != 0:
		raise WorktreeError(f"git worktree add failed for {task_id}: {stderr}")

	logger.info(f"Created worktree {path} on {branch} (from {base_branch})")
	return TaskWorktree(task_id=task_id, path=path, branch=branch, base_branch=base_branch)


async def remove_task_worktree(project_dir: Path, path: Path) -> None:
	"""Remove a task worktree. Its branch is kept for review."""
	_, stderr, rc = await run_git(["worktree", "remove", "--force", str(path)], Path(project_dir))
	if rc != 0:
		raise WorktreeError(f"git worktree remove failed for {path}: {stderr}")
	logger.info(f"Removed worktree {path}")


async def list_task_worktrees(project_dir: Path, worktree_dir: Path) -> list[Path]:
	"""Worktrees registered with git that live under worktree_dir."""
	stdout, stderr, rc = await run_git(["worktree", "list", "--porcelain"], Path(project_dir))
	if rc != 0:
		raise WorktreeError(f"git worktree list failed: {stderr}")
	root = Path(worktree_dir).resolve()
	found = []
	for line in stdout.splitlines():
		if not line.startswith("worktree "):
			continue
		path = Path(line[len("worktree "):]).resolve()
		if path == root or root in path.parents:
			found.append(path)
	return found


async def prune_worktrees(project_dir: Path) -> None:
	"""Drop git's records of worktrees whose directories are gone."""
	_, stderr, rc = await run_git(["worktree", "prune"], Path(project_dir))
	if rc != 0:
		raise WorktreeError(f"git worktree prune failed: {stderr}")


@dataclass
class BranchDivergence:
	"""What a task branch carries beyond its base branch."""
	branch: str
	base_branch: str
	commits: int
	tip_sha: str
	diff_stat: str

	@property
	def has_changes(self) -> bool:
		return self.commits > 0


async def check_branch_divergence(worktree_path: Path, base_branch: str, branch: str) -> BranchDivergence:
	"""
	Count the commits on `branch` that `base_branch` does not have.

	The tip falls back to "unknown" and the diff stat to "" when git cannot
	produce them; only the commit count is required.

	Raises:
		WorktreeError: if git cannot compare the two branches
	"""
	cwd = Path(worktree_path)
	stdout, stderr, rc = await run_git(["log", f"{base_branch}..{branch}", "--oneline"], cwd)
	if rc != 0:
		raise WorktreeError(f"git log {base_branch}..{branch} failed: {stderr}")
	commits = len([line for line in stdout.splitlines() if line.strip()])

	tip_sha, _, rc = await run_git(["rev-parse", branch], cwd)
	if rc != 0 or not tip_sha:
		tip_sha = "unknown"

	diff_stat, _, rc = await run_git(["diff", "--stat", f"{base_branch}..{branch}"], cwd)
	if rc != 0:
		diff_stat = ""

	return BranchDivergence(
		branch=branch,
		base_branch=base_branch,
		commits=commits,
		tip_sha=tip_sha,
		diff_stat=diff_stat,
	)
