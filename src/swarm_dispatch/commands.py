"""
Command surface - handlers for /clean, /plans, /dispatch, /synth and /apply.

The host calls the router before running a slash command. Each handler
checks the command name, ignores commands that are not its own, and may
append text parts to the result or rewrite the command's arguments.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .notify import Notifier, NotifyVariant, safe_notify
from .registry.models import PlanStatus
from .registry.session_plans import (
	DEFAULT_SESSION_KEY_LENGTH,
	clear_plans,
	find_closest_plan,
	lookup_plan,
	mark_plan_executed,
	read_plan_registry,
	update_plan_status,
)
from .registry.store import AI_DIR, PathLike, ai_dir, list_plan_artifacts, plan_artifact_path
from .swarm.planner import SAFE_PLAN_NAME, plan_dispatch

logger = logging.getLogger(__name__)


@dataclass
class CommandInvocation:
	"""A slash command about to run."""
	command: str
	session_id: str = ""
	arguments: str = ""

	@property
	def name(self) -> str:
		return self.command.lstrip("/").lower()


@dataclass
class CommandResult:
	"""What the handlers produced: text parts plus (possibly rewritten) arguments."""
	parts: list[str] = field(default_factory=list)
	arguments: str = ""

	def add(self, text: str) -> None:
		self.parts.append(text)

	@property
	def text(self) -> str:
		return "\n\n".join(self.parts)


CommandHandler = Callable[[CommandInvocation, CommandResult], Awaitable[None]]


class CommandRouter:
	"""Runs every handler in order for each command."""

	def __init__(self, handlers: list[CommandHandler]):
		self.handlers = list(handlers)

	async def __call__(self, invocation: CommandInvocation) -> CommandResult:
		result = CommandResult(arguments=invocation.arguments)
		for handler in self.handlers:
			await handler(invocation, result)
		return result


# =============================================================================
# /clean
# =============================================================================

def clean_handler(directory: PathLike) -> CommandHandler:
	"""Deletes every .md file under .ai/ plus the plan registry."""

	async def handle(invocation: CommandInvocation, result: CommandResult) -> None:
		if invocation.name != "clean":
			return
		if not ai_dir(directory).is_dir():
			result.add(f"No `{AI_DIR}/` directory found, nothing to clean.")
			return

		cleared = await clear_plans(directory)
		lines = []
		if cleared.deleted:
			lines.append(f"Deleted {len(cleared.deleted)} file(s) from {AI_DIR}/:")
			lines.extend(f"  - {name}" for name in cleared.deleted)
		else:
			lines.append(f"No `.md` files found in `{AI_DIR}/`.")
		if cleared.registry_removed:
			lines.append("Deleted session-plan registry (.session-plans.json).")
		if cleared.errors:
			lines.append("")
			lines.append(f"Errors ({len(cleared.errors)}):")
			lines.extend(f"  - {error}" for error in cleared.errors)
		result.add("\n".join(lines))

	return handle


# =============================================================================
# /plans
# =============================================================================

def plans_handler(directory: PathLike, notifier: Optional[Notifier] = None) -> CommandHandler:
	"""Table of plan artifacts with their registry status."""

	async def handle(invocation: CommandInvocation, result: CommandResult) -> None:
		if invocation.name != "plans":
			return
		if not ai_dir(directory).is_dir():
			result.add(f"No `{AI_DIR}/` directory found. No plans exist yet.")
			await safe_notify(notifier, "Plans", "No .ai/ directory found. No plans exist yet.", NotifyVariant.WARNING)
			return

		names = await asyncio.to_thread(list_plan_artifacts, directory)
		if not names:
			result.add(f"No plan files found in `{AI_DIR}/`.")
			await safe_notify(notifier, "Plans", "No plan files found in .ai/.")
			return

		registry = await read_plan_registry(directory)
		by_plan = {record.plan: (key, record) for key, record in registry.items()}

		lines = ["## Plans", "", "| Plan | Status | Session | Created |", "|------|--------|---------|---------|"]
		counts: Counter[str] = Counter()
		for name in names:
			key, record = by_plan.get(name, ("-", None))
			status = record.status.value if record else "untracked"
			created = record.created_at[:10] if record else "-"
			lines.append(f"| {name} | {status} | {key} | {created} |")
			counts[status] += 1
		result.add("\n".join(lines))

		summary = ", ".join(f"{count} {status}" for status, count in counts.items())
		await safe_notify(notifier, "Plans", f"{len(names)} plans found: {summary}")

	return handle


# =============================================================================
# /dispatch
# =============================================================================

def dispatch_handler(directory: PathLike) -> CommandHandler:
	"""Validates a batch of plans and emits the dispatch payload."""

	async def handle(invocation: CommandInvocation, result: CommandResult) -> None:
		if invocation.name != "dispatch":
			return
		outcome = await plan_dispatch(directory, invocation.arguments)
		result.add(outcome.render())

	return handle


# =============================================================================
# /synth
# =============================================================================

def _read_plan(directory: PathLike, plan: str) -> str:
	return plan_artifact_path(directory, plan).read_text(encoding="utf-8")


def synth_handler(directory: PathLike, key_length: int = DEFAULT_SESSION_KEY_LENGTH) -> CommandHandler:
	"""
	Resolves the plan to execute and inlines it.

	Resolution order: exact artifact name, unique fuzzy match, then the
	plan registered for the calling session. The resolved plan is marked
	executed and becomes the command's argument.
	"""

	async def inline(result: CommandResult, plan: str, banner: str) -> bool:
		try:
			content = await asyncio.to_thread(_read_plan, directory, plan)
		except OSError as e:
			result.add(f"Failed to read plan file: {e}")
			return False
		result.arguments = plan
		result.add(f"{banner}\n\n## Plan File Content\n\n{content}")
		return True

	async def handle(invocation: CommandInvocation, result: CommandResult) -> None:
		if invocation.name != "synth":
			return
		requested = invocation.arguments.strip()

		if requested:
			exact = SAFE_PLAN_NAME.match(requested) is not None
			if exact and await asyncio.to_thread(plan_artifact_path(directory, requested).is_file):
				if await inline(result, requested, f'[RESOLVED] Plan "{requested}".'):
					await mark_plan_executed(directory, requested)
				return

			match = await find_closest_plan(directory, requested)
			if match is None:
				result.add(
					f'No plan matches "{requested}" (or the name is ambiguous). '
					"Use `/plans` to see all available plans."
				)
				return
			banner = f'[AUTO-RESOLVED] Partial match "{requested}" resolved to plan: "{match.plan}"'
			if await inline(result, match.plan, banner):
				await mark_plan_executed(directory, match.plan)
			return

		entry = await lookup_plan(directory, invocation.session_id, key_length)
		if entry is None:
			result.add(
				"No plan is associated with this session. Either:\n"
				"- Ask the planner to create a plan first, OR\n"
				"- Run `/synth <plan-name>` with an explicit plan name.\n\n"
				"Use `/plans` to see all available plans."
			)
			return
		banner = f'[SESSION-RESOLVED] Plan "{entry.plan}" auto-resolved from session registry.'
		if await inline(result, entry.plan, banner):
			await update_plan_status(directory, invocation.session_id, PlanStatus.EXECUTED, key_length)

	return handle


# =============================================================================
# /apply
# =============================================================================

APPLY_USAGE = (
	"Usage: `/apply <description of what to change>`\n\n"
	"You must describe what you want changed. Examples:\n"
	"- `/apply fix the off-by-one error in src/utils/parse.py`\n"
	'- `/apply rename the variable "foo" to "count" in src/main.py`\n'
	"- `/apply add a None check before calling process() in handler.py`"
)


def apply_handler(directory: PathLike) -> CommandHandler:
	"""Usage text, or the constraints for a small direct edit."""

	async def handle(invocation: CommandInvocation, result: CommandResult) -> None:
		if invocation.name != "apply":
			return
		if not invocation.arguments.strip():
			result.add(APPLY_USAGE)
			return
		result.add(
			f"[APPLY-MODE] Working directory: {directory}\n\n"
			"[APPLY-MODE] This is a direct-edit command, not a plan execution.\n\n"
			"## Constraints\n\n"
			"- Make ONLY the change described below. Nothing else.\n"
			"- Keep changes minimal and surgical.\n"
			"- Do NOT refactor, restructure, or reorganize surrounding code.\n"
			"- Do NOT add features, tests, or documentation unless explicitly requested.\n"
			f"- Do NOT create or modify any plan files ({AI_DIR}/plan-*.md).\n"
			"- Do NOT interact with the session-plan registry.\n"
			"- After making the change, summarize exactly what was changed and which files were modified."
		)

	return handle


def build_command_router(
	directory: PathLike,
	notifier: Optional[Notifier] = None,
	key_length: int = DEFAULT_SESSION_KEY_LENGTH,
) -> CommandRouter:
	"""Router with every built-in command."""
	return CommandRouter([
		clean_handler(directory),
		synth_handler(directory, key_length),
		plans_handler(directory, notifier),
		dispatch_handler(directory),
		apply_handler(directory),
	])
