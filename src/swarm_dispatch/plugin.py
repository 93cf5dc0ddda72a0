"""
Host hooks - the guard chain, command router and session greeter bundled
behind the four callbacks a host agent runtime invokes.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .commands import CommandInvocation, CommandResult, CommandRouter, build_command_router
from .config import Config, get_config
from .guards import GuardChain, ToolInvocation, build_guard_chain
from .notify import LoggingNotifier, NotifiedSessions, Notifier, SessionGreeter
from .registry.store import PathLike

logger = logging.getLogger(__name__)


@dataclass
class Hooks:
	"""Callbacks for the host runtime."""
	guards: GuardChain
	router: CommandRouter
	greeter: SessionGreeter

	async def tool_before(
		self,
		tool: str,
		session_id: str,
		args: Optional[dict] = None,
		call_id: Optional[str] = None,
	) -> None:
		"""
		Before a tool runs.

		Raises:
			GuardRejection: the call must not run; show the message to the worker
		"""
		await self.guards.before(ToolInvocation(tool=tool, session_id=session_id, args=args or {}, call_id=call_id))

	async def tool_after(
		self,
		tool: str,
		session_id: str,
		args: Optional[dict] = None,
		result: Any = None,
		call_id: Optional[str] = None,
	) -> None:
		"""After a tool ran."""
		await self.guards.after(
			ToolInvocation(tool=tool, session_id=session_id, args=args or {}, call_id=call_id, result=result)
		)

	async def command(self, command: str, session_id: str, arguments: str = "") -> CommandResult:
		"""Before a slash command runs."""
		return await self.router(CommandInvocation(command=command, session_id=session_id, arguments=arguments))

	async def chat_message(self, session_id: str, agent: Optional[str] = None) -> bool:
		"""On every chat message; greets each session once."""
		return await self.greeter.on_chat_message(session_id, agent)


def create_hooks(
	directory: Optional[PathLike] = None,
	config: Optional[Config] = None,
	notifier: Optional[Notifier] = None,
	sessions: Optional[NotifiedSessions] = None,
) -> Hooks:
	"""
	Build the hooks for a project.

	Args:
		directory: Project root (defaults to config.project_dir)
		config: Configuration (defaults to the global config)
		notifier: Where notifications go (defaults to the log)
		sessions: Greeted-session state; pass one in to share or reset it
	"""
	config = config or get_config()
	directory = Path(directory) if directory is not None else config.project_dir
	notifier = notifier or LoggingNotifier()
	logger.debug(f"Creating hooks for {directory}")
	return Hooks(
		guards=build_guard_chain(directory, config),
		router=build_command_router(directory, notifier, config.session_key_length),
		greeter=SessionGreeter(notifier, sessions if sessions is not None else NotifiedSessions()),
	)
