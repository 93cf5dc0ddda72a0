"""Shared test fixtures and helpers for swarm-dispatch tests."""

import asyncio
import json
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

from swarm_dispatch.registry.models import SwarmRecord, TaskRecord, TaskStatus
from swarm_dispatch.swarm.client import MessagePart, SessionMessage

HANG = object()


def init_git_repo(path: Path) -> None:
	"""Create a real git repo with an initial commit."""
	path.mkdir(parents=True, exist_ok=True)
	subprocess.run(["git", "init"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=str(path), capture_output=True)
	subprocess.run(["git", "config", "user.name", "Test"], cwd=str(path), capture_output=True)
	(path / "README.md").write_text("# Test\n")
	subprocess.run(["git", "add", "README.md"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "commit", "-m", "init"], cwd=str(path), capture_output=True, check=True)


def capture_tools(config: MagicMock, register_fn: Callable, **kwargs) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Config object to pass to the registration function
		register_fn: The registration function (e.g., register_swarm_tools)
		**kwargs: Extra keyword arguments for the registration function

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config, **kwargs)
	return captured


def write_plan(directory: Path, name: str, content: Optional[str] = None) -> Path:
	"""Write .ai/plan-<name>.md under a project directory."""
	path = directory / ".ai" / f"plan-{name}.md"
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(content if content is not None else f"# Plan: {name}\n\n1. Do the {name} work\n")
	return path


def worker_json(
	status: str = "complete",
	files: Optional[list[str]] = None,
	summary: str = "Done",
	**extra: Any,
) -> str:
	"""A worker's structured final reply."""
	payload = {"status": status, "files_modified": files or [], "summary": summary, **extra}
	return json.dumps(payload)


def assistant(text: Optional[str] = None, error: Optional[str] = None) -> SessionMessage:
	parts = [MessagePart(type="text", text=text)] if text is not None else []
	return SessionMessage(role="assistant", parts=parts, error=error)


def user(text: str) -> SessionMessage:
	return SessionMessage(role="user", parts=[MessagePart(type="text", text=text)])


def make_task(task_id: str, status: TaskStatus = TaskStatus.PENDING, agent: str = "implementer") -> TaskRecord:
	return TaskRecord(task_id=task_id, agent=agent, status=status)


def make_swarm_record(
	swarm_id: str = "swarm-1",
	statuses: Optional[list[TaskStatus]] = None,
	created_at: str = "2024-01-01T00:00:00+00:00",
) -> SwarmRecord:
	"""A swarm with one task per status (all pending by default)."""
	statuses = statuses if statuses is not None else [TaskStatus.PENDING, TaskStatus.PENDING]
	tasks = [make_task(f"t{i + 1}", status) for i, status in enumerate(statuses)]
	return SwarmRecord(swarm_id=swarm_id, created_at=created_at, task_count=len(tasks), tasks=tasks)


def task_id_from_prompt(prompt: str) -> str:
	"""Task id from the "# SWARM TASK: <id>" header of a dispatched prompt."""
	first = prompt.split("\n", 1)[0]
	return first.split(":", 1)[1].strip() if ":" in first else ""


class FakeSessionClient:
	"""
	In-memory WorkerSessionClient.

	Replies are keyed by task id. A reply may be the final assistant text,
	a list of SessionMessages, an exception to raise from send_message, or
	HANG to block until cancelled.
	"""

	def __init__(self, replies: Optional[dict[str, Any]] = None, default_reply: Any = None, delay: float = 0.0):
		self.replies = replies or {}
		self.default_reply = default_reply if default_reply is not None else worker_json()
		self.delay = delay
		self.created: list[tuple[str, Optional[str], Optional[str]]] = []
		self.prompts: dict[str, str] = {}
		self.messages: dict[str, list[SessionMessage]] = {}
		self.aborted: list[str] = []
		self.max_in_flight = 0
		self._in_flight = 0

	async def create_session(self, agent: str, title: Optional[str] = None, directory: Optional[str] = None) -> str:
		self.created.append((agent, title, directory))
		session_id = f"ses_{len(self.created):04d}"
		self.messages[session_id] = []
		return session_id

	async def send_message(self, session_id: str, prompt: str, agent: Optional[str] = None) -> None:
		self.prompts[session_id] = prompt
		reply = self.replies.get(task_id_from_prompt(prompt), self.default_reply)
		self._in_flight += 1
		self.max_in_flight = max(self.max_in_flight, self._in_flight)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			if reply is HANG:
				await asyncio.Event().wait()
			if isinstance(reply, BaseException):
				raise reply
		finally:
			self._in_flight -= 1

		if isinstance(reply, list):
			self.messages[session_id] = list(reply)
		else:
			self.messages[session_id] = [user(prompt), assistant(reply)]

	async def list_messages(self, session_id: str) -> list[SessionMessage]:
		return list(self.messages.get(session_id, []))

	async def abort_session(self, session_id: str) -> None:
		self.aborted.append(session_id)
