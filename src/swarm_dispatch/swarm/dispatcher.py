"""
Swarm Dispatcher - runs a batch of tasks on worker sessions concurrently.

Each task:
1. Optionally gets its own git worktree and branch
2. Gets a fresh worker session (task -> running)
3. Receives its prompt; the reply is awaited up to the task timeout
4. Has its final reply parsed by the Result Extractor (task -> terminal)

A task that ran on its own branch also has the commits it added beyond the
base branch counted, so a "complete" report with nothing committed shows up
in the merge instructions.

Tasks run fan-out/fan-in under an asyncio.Semaphore. One task failing never
stops the others. Every transition is persisted to the swarm registry so
another process (or a later run) can inspect progress.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from ..notify import Notifier, NotifyVariant, safe_notify
from ..registry.models import SwarmRecord, SwarmStatus, TaskRecord, TaskStatus
from ..registry.store import PathLike
from ..registry.swarm_records import (
	DEFAULT_MAX_RECORDS,
	apply_task_update,
	get_swarm_summary,
	is_task_terminal,
	lookup_swarm,
	record_swarm,
	update_task_status,
)
from .client import WorkerSessionClient
from .logs import write_task_log
from .messages import ExtractionFailure, WorkerOutput, extract_worker_output
from .planner import AgentTask, PlanReference, read_plan_content
from .worktree import TaskWorktree, WorktreeError, check_branch_divergence, create_task_worktree

logger = logging.getLogger(__name__)

STRUCTURED_OUTPUT_INSTRUCTIONS = "\n".join([
	"When done, output ONLY a JSON object (no markdown fences) with this exact schema:",
	"",
	"{",
	'  "status": "complete" | "partial" | "failed",',
	'  "files_modified": ["path/to/file1.py", ...],',
	'  "summary": "Brief description of what was done",',
	'  "blockers": ["optional", "list", "of", "blockers"]',
	"}",
	"",
	"Required fields: status, files_modified, summary. blockers is optional.",
])

ABORTED_ERROR = "aborted"


@dataclass
class SwarmOptions:
	"""Execution settings for one swarm."""
	concurrency: int = 5
	timeout_seconds: Optional[float] = 600.0
	worktrees: bool = False
	worktree_dir: Optional[Path] = None
	max_records: int = DEFAULT_MAX_RECORDS
	write_logs: bool = True

	@classmethod
	def from_config(cls, config: Config, **overrides) -> "SwarmOptions":
		"""Options from the global config, with per-call overrides (None means default)."""
		options = cls(
			concurrency=config.concurrency,
			timeout_seconds=config.task_timeout,
			worktree_dir=config.resolved_worktree_dir,
			max_records=config.max_swarm_records,
		)
		for key, value in overrides.items():
			if value is not None:
				setattr(options, key, value)
		return options


def build_swarm_prompt(swarm_id: str, task: AgentTask, worktree: Optional[TaskWorktree] = None) -> str:
	"""Full prompt sent to a worker for one task."""
	lines = [f"# SWARM TASK: {task.id}", f"Swarm: {swarm_id}"]
	if task.description:
		lines.append(f"Description: {task.description}")
	if worktree is not None:
		lines += [
			f"Working directory: {worktree.path}",
			f"Branch: {worktree.branch}",
			"",
			"## Rules",
			f"- ALL file operations MUST be within `{worktree.path}`",
			"- Commit your work on the branch above; do not merge it",
			"- Do NOT read or write .env, .pem, .key, or credential files",
		]
	lines += ["", "## Task", task.prompt, "", "## Output", STRUCTURED_OUTPUT_INSTRUCTIONS]
	return "\n".join(lines)


def build_plan_tasks(directory: PathLike, plans: list[PlanReference], agent: str) -> list[AgentTask]:
	"""
	One task per plan artifact, prompting the agent to execute it.

	Raises:
		OSError: if a plan artifact cannot be read
	"""
	tasks = []
	for plan in plans:
		content = read_plan_content(directory, plan)
		tasks.append(AgentTask(
			id=plan.task_id,
			agent=agent,
			prompt=f"Execute the plan in `{plan.plan_file}`.\n\n## Plan\n\n{content}",
			description=f"Implement plan {plan.task_id}",
		))
	return tasks


class SwarmDispatcher:
	"""
	Runs one swarm. Create one dispatcher per batch.

	Usage:
		dispatcher = SwarmDispatcher(client, project_dir, SwarmOptions(concurrency=3))
		record = await dispatcher.start(tasks)   # returns immediately
		final = await dispatcher.wait(timeout=600)
	"""

	def __init__(
		self,
		client: WorkerSessionClient,
		directory: PathLike,
		options: Optional[SwarmOptions] = None,
		notifier: Optional[Notifier] = None,
	):
		self.client = client
		self.directory = Path(directory)
		self.options = options or SwarmOptions()
		self.notifier = notifier
		self.swarm_id: Optional[str] = None
		self.record: Optional[SwarmRecord] = None
		self._tasks: dict[str, AgentTask] = {}
		self._sessions: dict[str, str] = {}
		self._runner: Optional[asyncio.Task] = None
		self._lock = asyncio.Lock()

	@property
	def started(self) -> bool:
		return self.record is not None

	@property
	def done(self) -> bool:
		return self._runner is not None and self._runner.done()

	@property
	def worktree_dir(self) -> Path:
		return self.options.worktree_dir or self.directory / ".ai" / ".worktrees"

	async def start(self, tasks: list[AgentTask]) -> SwarmRecord:
		"""
		Record the swarm (all tasks pending) and launch it in the background.

		Returns:
			The initial record
		"""
		if self.started:
			raise RuntimeError("SwarmDispatcher.start called more than once")
		if not tasks:
			raise ValueError("A swarm needs at least one task")

		self.swarm_id = str(uuid.uuid4())
		self._tasks = {task.id: task for task in tasks}
		self.record = SwarmRecord(
			swarm_id=self.swarm_id,
			task_count=len(tasks),
			worktrees_enabled=self.options.worktrees,
			tasks=[TaskRecord(task_id=task.id, agent=task.agent) for task in tasks],
		)
		await record_swarm(self.directory, self.record, self.options.max_records)

		logger.info(
			f"Dispatching swarm {self.swarm_id}: {len(tasks)} task(s), "
			f"concurrency {self.options.concurrency}"
		)
		await safe_notify(
			self.notifier,
			"Swarm Dispatched",
			f"Swarm {self.swarm_id} started with {len(tasks)} tasks (concurrency: {self.options.concurrency}).",
		)
		self._runner = asyncio.create_task(self._run_all())
		return self.record.model_copy(deep=True)

	async def run(self, tasks: list[AgentTask], timeout: Optional[float] = None) -> SwarmRecord:
		"""start() then wait()."""
		await self.start(tasks)
		return await self.wait(timeout)

	async def wait(self, timeout: Optional[float] = None) -> SwarmRecord:
		"""
		Wait until every task is terminal.

		Raises:
			TimeoutError: if the swarm is still running after `timeout` seconds
		"""
		if self._runner is None or self.record is None:
			raise RuntimeError("Swarm not dispatched yet")
		_, pending = await asyncio.wait({self._runner}, timeout=timeout)
		if pending:
			raise TimeoutError(f"Swarm {self.swarm_id} still running after {timeout}s")
		if not self._runner.cancelled() and self._runner.exception() is not None:
			raise self._runner.exception()
		return self.record.model_copy(deep=True)

	async def abort(self) -> SwarmRecord:
		"""Cancel in-flight work and fail every non-terminal task."""
		if self.record is None:
			raise RuntimeError("Swarm not dispatched yet")
		if self._runner is not None and not self._runner.done():
			self._runner.cancel()
			await asyncio.wait({self._runner})

		affected = 0
		for task in list(self.record.tasks):
			if is_task_terminal(task):
				continue
			session_id = self._sessions.get(task.task_id)
			if session_id:
				await self._abort_session(session_id)
			if await self._transition(task.task_id, TaskStatus.FAILED, error=ABORTED_ERROR):
				affected += 1

		logger.warning(f"Swarm {self.swarm_id} aborted; {affected} task(s) affected")
		await safe_notify(
			self.notifier,
			"Swarm Aborted",
			f"Swarm aborted. {affected} tasks affected.",
			NotifyVariant.WARNING,
		)
		return self.record.model_copy(deep=True)

	async def _run_all(self) -> None:
		semaphore = asyncio.Semaphore(max(1, self.options.concurrency))

		async def bounded(task: AgentTask) -> None:
			async with semaphore:
				await self._run_task(task)

		# Fan out
		await asyncio.gather(*(bounded(task) for task in self._tasks.values()))

		# Fan in
		summary = get_swarm_summary(self.record)
		logger.info(
			f"Swarm {self.swarm_id} finished {self.record.status.value}: "
			f"{summary.completed} completed, {summary.failed} failed"
		)
		if self.record.status == SwarmStatus.COMPLETED:
			await safe_notify(
				self.notifier,
				"Swarm Complete",
				f"All {summary.total} tasks finished successfully.",
				NotifyVariant.SUCCESS,
			)
		else:
			await safe_notify(
				self.notifier,
				"Swarm Finished" if self.record.status == SwarmStatus.PARTIAL else "Swarm Failed",
				f"{summary.completed} of {summary.total} tasks completed, {summary.failed} failed.",
				NotifyVariant.WARNING if self.record.status == SwarmStatus.PARTIAL else NotifyVariant.ERROR,
			)

	async def _run_task(self, task: AgentTask) -> None:
		if self._is_terminal(task.id):
			return

		session_id: Optional[str] = None
		raw_output: Optional[str] = None
		try:
			worktree = None
			use_worktree = task.worktree if task.worktree is not None else self.options.worktrees
			if use_worktree:
				worktree = await create_task_worktree(self.directory, self.worktree_dir, task.id)
				await self._transition(
					task.id, TaskStatus.PENDING,
					worktree_path=str(worktree.path), branch=worktree.branch, base_branch=worktree.base_branch,
				)

			session_id = await self.client.create_session(
				task.agent,
				title=f"swarm {self.swarm_id[:8]}: {task.id}",
				directory=str(worktree.path) if worktree else None,
			)
			self._sessions[task.id] = session_id
			if not await self._transition(task.id, TaskStatus.RUNNING, session_id=session_id):
				# Resolved elsewhere (abort) while the session was being created
				await self._abort_session(session_id)
				return

			prompt = build_swarm_prompt(self.swarm_id, task, worktree)
			await asyncio.wait_for(
				self.client.send_message(session_id, prompt, agent=task.agent),
				timeout=self.options.timeout_seconds,
			)

			outcome = await extract_worker_output(self.client, session_id)
			if isinstance(outcome, ExtractionFailure):
				raw_output = outcome.raw
				await self._transition(
					task.id, TaskStatus.FAILED,
					result=outcome.raw or None, error=outcome.error,
				)
			else:
				status = TaskStatus.FAILED if outcome.failed else TaskStatus.COMPLETED
				branch_fields = await self._branch_fields(task.id, worktree, outcome) if worktree else {}
				await self._transition(
					task.id, status,
					result=outcome.model_dump_json(exclude_none=True),
					error=f"Worker reported failure: {outcome.summary}" if outcome.failed else None,
					**branch_fields,
				)
		except asyncio.TimeoutError:
			logger.warning(f"Task {task.id} timed out after {self.options.timeout_seconds}s")
			if session_id:
				await self._abort_session(session_id)
			await self._transition(
				task.id, TaskStatus.FAILED,
				error=f"Timed out after {self.options.timeout_seconds}s",
			)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.warning(f"Task {task.id} failed: {e}")
			await self._transition(task.id, TaskStatus.FAILED, error=str(e))

		if self.options.write_logs:
			record = self.record.get_task(task.id)
			if record is not None and is_task_terminal(record):
				await asyncio.to_thread(write_task_log, self.directory, self.swarm_id, record, raw_output)

	async def _branch_fields(self, task_id: str, worktree: TaskWorktree, outcome: WorkerOutput) -> dict:
		"""Commit count and tip of a task branch, or nothing when git cannot tell."""
		try:
			divergence = await check_branch_divergence(worktree.path, worktree.base_branch, worktree.branch)
		except WorktreeError as e:
			logger.warning(f"Task {task_id}: could not check branch {worktree.branch}: {e}")
			return {}
		if not divergence.has_changes and not outcome.failed:
			logger.warning(f"Task {task_id} reported {outcome.status} but {worktree.branch} has no commits")
		return {"commits": divergence.commits, "tip_sha": divergence.tip_sha}

	def _is_terminal(self, task_id: str) -> bool:
		task = self.record.get_task(task_id)
		return task is None or is_task_terminal(task)

	async def _transition(self, task_id: str, status: TaskStatus, **fields) -> bool:
		"""Apply a task transition and persist it. False if it was not allowed."""
		async with self._lock:
			persisted = await update_task_status(self.directory, self.swarm_id, task_id, status, **fields)
			if persisted is not None:
				self.record = persisted
				return True
			on_disk = await lookup_swarm(self.directory, self.swarm_id)
			if on_disk is not None:
				# Refused on disk (task already terminal there); adopt that state
				self.record = on_disk
				return False
			if not apply_task_update(self.record, task_id, status, **fields):
				return False
			# Record vanished from disk (cleared or pruned); write it back
			logger.debug(f"Swarm {self.swarm_id} missing from registry; re-recording")
			await record_swarm(self.directory, self.record, self.options.max_records)
			return True

	async def _abort_session(self, session_id: str) -> None:
		try:
			await self.client.abort_session(session_id)
		except Exception as e:
			logger.debug(f"Abort of session {session_id} failed: {e}")


class ActiveSwarms:
	"""In-process dispatchers keyed by swarm id."""

	def __init__(self):
		self._dispatchers: dict[str, SwarmDispatcher] = {}

	def add(self, dispatcher: SwarmDispatcher) -> None:
		if dispatcher.swarm_id is None:
			raise ValueError("Dispatcher has not been started")
		self._dispatchers[dispatcher.swarm_id] = dispatcher

	def get(self, swarm_id: str) -> Optional[SwarmDispatcher]:
		return self._dispatchers.get(swarm_id)

	def discard(self, swarm_id: str) -> None:
		self._dispatchers.pop(swarm_id, None)

	def running(self) -> list[SwarmDispatcher]:
		"""Dispatchers whose swarm has not finished."""
		return [d for d in self._dispatchers.values() if not d.done]

	def prune_finished(self) -> list[str]:
		"""Drop dispatchers whose swarm has finished. Returns the dropped ids."""
		finished = [swarm_id for swarm_id, d in self._dispatchers.items() if d.done]
		for swarm_id in finished:
			del self._dispatchers[swarm_id]
		return finished

	def clear(self) -> None:
		self._dispatchers.clear()

	def __iter__(self) -> Iterator[SwarmDispatcher]:
		return iter(list(self._dispatchers.values()))

	def __len__(self) -> int:
		return len(self._dispatchers)

	def __contains__(self, swarm_id: object) -> bool:
		return swarm_id in self._dispatchers
