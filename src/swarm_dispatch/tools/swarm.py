"""Swarm tools - dispatch, monitor, wait for and abort worker swarms."""

import json
import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..notify import LoggingNotifier, Notifier
from ..registry.models import SwarmRecord
from ..registry.swarm_records import get_swarm_summary, list_swarms, lookup_swarm
from ..swarm.client import OpencodeSessionClient, WorkerSessionClient
from ..swarm.dispatcher import ActiveSwarms, SwarmDispatcher, SwarmOptions, build_plan_tasks
from ..swarm.merge import build_merge_instructions
from ..swarm.planner import TaskInputError, parse_task_input, plan_dispatch

logger = logging.getLogger(__name__)

DEFAULT_WAIT_SECONDS = 600.0


def swarm_to_dict(record: SwarmRecord) -> dict:
	"""Registry form of a swarm plus its count rollup and, once finished, merge instructions."""
	data = record.to_json_dict()
	data["summary"] = get_swarm_summary(record).model_dump()
	if record.completed_at:
		instructions = build_merge_instructions(record)
		if instructions:
			data["mergeInstructions"] = instructions
	return data


def register_swarm_tools(
	mcp: FastMCP,
	config: Config,
	client: Optional[WorkerSessionClient] = None,
	active: Optional[ActiveSwarms] = None,
	notifier: Optional[Notifier] = None,
) -> None:
	"""
	Register swarm tools.

	Args:
		mcp: Server to register on
		config: Configuration
		client: Worker session client (defaults to an opencode HTTP client)
		active: In-process swarm registry shared by these tools
		notifier: Notification sink (defaults to the log)
	"""
	active = active if active is not None else ActiveSwarms()
	notifier = notifier or LoggingNotifier()
	clients: dict[str, WorkerSessionClient] = {}

	def get_client() -> WorkerSessionClient:
		if client is not None:
			return client
		if "default" not in clients:
			clients["default"] = OpencodeSessionClient(config.opencode_url, config.opencode_password)
		return clients["default"]

	async def launch(tasks, concurrency, timeout, worktrees) -> SwarmDispatcher:
		options = SwarmOptions.from_config(
			config,
			concurrency=concurrency,
			timeout_seconds=timeout,
			worktrees=worktrees,
		)
		dispatcher = SwarmDispatcher(get_client(), config.project_dir, options, notifier)
		await dispatcher.start(tasks)
		for swarm_id in active.prune_finished():
			logger.debug(f"Dropped finished swarm {swarm_id} from the active set")
		active.add(dispatcher)
		return dispatcher

	@mcp.tool()
	async def swarm_dispatch(
		tasks: str,
		concurrency: Optional[int] = None,
		timeout: Optional[float] = None,
		worktrees: Optional[bool] = None,
	) -> str:
		"""
		Dispatch a swarm of concurrent worker sessions. Returns the swarm id
		and initial task states.

		Args:
			tasks: JSON array ([{"id": "t1", "agent": "implementer", "prompt": "Do X"}, ...])
				or one "agent: prompt" task per line
			concurrency: Max concurrent sessions (1-20, default from config)
			timeout: Per-task timeout in seconds (default from config)
			worktrees: Give each task its own git worktree and branch
		"""
		try:
			parsed = parse_task_input(tasks)
		except TaskInputError as e:
			return json.dumps({"error": str(e), "problems": e.problems}, indent=2)

		try:
			dispatcher = await launch(parsed, concurrency, timeout, worktrees)
		except (OSError, ValueError, RuntimeError) as e:
			logger.error(f"Swarm dispatch failed: {e}")
			return json.dumps({"error": str(e)}, indent=2)

		record = dispatcher.record
		return json.dumps({
			"swarmId": record.swarm_id,
			"status": record.status.value,
			"taskCount": record.task_count,
			"concurrency": dispatcher.options.concurrency,
			"timeoutSeconds": dispatcher.options.timeout_seconds,
			"worktreesEnabled": record.worktrees_enabled,
			"tasks": [
				{"id": t.task_id, "agent": t.agent, "status": t.status.value}
				for t in record.tasks
			],
		}, indent=2)

	@mcp.tool()
	async def swarm_dispatch_plans(
		names: str = "",
		concurrency: Optional[int] = None,
		worktrees: Optional[bool] = None,
	) -> str:
		"""
		Dispatch plan artifacts (.ai/plan-<name>.md) to the implementer persona,
		one task per plan.

		Args:
			names: Space-separated plan names; empty picks every plan not yet executed
			concurrency: Max concurrent sessions
			worktrees: Give each plan its own git worktree and branch
		"""
		result = await plan_dispatch(config.project_dir, names)
		if not result.ok:
			return json.dumps({
				"error": result.render(),
				"outcome": result.outcome.value,
				"invalidNames": result.invalid_names,
				"missingPlans": result.missing_plans,
			}, indent=2)

		try:
			tasks = build_plan_tasks(config.project_dir, result.plans, config.implementer_agent)
			dispatcher = await launch(tasks, concurrency, None, worktrees)
		except (OSError, ValueError, RuntimeError) as e:
			logger.error(f"Plan dispatch failed: {e}")
			return json.dumps({"error": str(e)}, indent=2)

		return json.dumps({
			"swarmId": dispatcher.swarm_id,
			"status": dispatcher.record.status.value,
			"plans": result.payload,
		}, indent=2)

	@mcp.tool()
	async def swarm_status(swarm_id: str) -> str:
		"""
		Current status of a running or finished swarm.

		Args:
			swarm_id: Id returned by swarm_dispatch
		"""
		dispatcher = active.get(swarm_id)
		record = dispatcher.record if dispatcher else await lookup_swarm(config.project_dir, swarm_id)
		if record is None:
			return json.dumps({"error": f"No swarm found with ID: {swarm_id}"}, indent=2)
		data = swarm_to_dict(record)
		data["active"] = dispatcher is not None and not dispatcher.done
		return json.dumps(data, indent=2)

	@mcp.tool()
	async def swarm_list(limit: int = 20) -> str:
		"""
		Recorded swarms, newest first.

		Args:
			limit: Maximum number of swarms to return
		"""
		records = await list_swarms(config.project_dir)
		return json.dumps({
			"total": len(records),
			"swarms": [
				{
					"swarmId": r.swarm_id,
					"status": r.status.value,
					"createdAt": r.created_at,
					"completedAt": r.completed_at,
					"summary": get_swarm_summary(r).model_dump(),
				}
				for r in records[:max(limit, 0)]
			],
		}, indent=2)

	@mcp.tool()
	async def swarm_wait(swarm_id: str, timeout: float = DEFAULT_WAIT_SECONDS) -> str:
		"""
		Block until every task of a swarm is terminal, or the timeout passes.

		Args:
			swarm_id: Swarm to wait for
			timeout: Max wait in seconds
		"""
		dispatcher = active.get(swarm_id)
		if dispatcher is None:
			record = await lookup_swarm(config.project_dir, swarm_id)
			if record is None:
				return json.dumps({"error": f"No swarm found with ID: {swarm_id}"}, indent=2)
			if record.completed_at is None:
				return json.dumps({
					"error": f"Swarm {swarm_id} is not running in this process",
					"swarm": swarm_to_dict(record),
				}, indent=2)
			return json.dumps(swarm_to_dict(record), indent=2)

		try:
			record = await dispatcher.wait(timeout)
		except TimeoutError as e:
			return json.dumps({"error": str(e), "swarm": swarm_to_dict(dispatcher.record)}, indent=2)
		except Exception as e:
			logger.error(f"Swarm {swarm_id} failed: {e}")
			active.discard(swarm_id)
			return json.dumps({"error": str(e), "swarm": swarm_to_dict(dispatcher.record)}, indent=2)
		active.discard(swarm_id)
		return json.dumps(swarm_to_dict(record), indent=2)

	@mcp.tool()
	async def swarm_abort(swarm_id: str) -> str:
		"""
		Abort every unfinished task of a swarm.

		Args:
			swarm_id: Swarm to abort
		"""
		dispatcher = active.get(swarm_id)
		if dispatcher is None:
			return json.dumps({"error": f"No active swarm with ID: {swarm_id}"}, indent=2)
		record = await dispatcher.abort()
		active.discard(swarm_id)
		return json.dumps({"swarmId": swarm_id, "aborted": True, "swarm": swarm_to_dict(record)}, indent=2)
