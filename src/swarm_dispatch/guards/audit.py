"""Audit trail of file-mutating tool calls (.ai/swarm-audit.log)."""

import asyncio
import logging
from pathlib import Path
from typing import Iterable

from ..registry.models import utc_now
from ..registry.store import PathLike, ai_dir
from .base import Guard, ToolInvocation

logger = logging.getLogger(__name__)

AUDIT_FILENAME = "swarm-audit.log"
MUTATING_TOOLS = frozenset({"write", "edit"})


def audit_log_path(directory: PathLike) -> Path:
	return ai_dir(directory) / AUDIT_FILENAME


def format_audit_line(invocation: ToolInvocation, key_length: int = 7) -> str:
	"""`<ISO time> | <session key> | <tool> | <path>`"""
	session = (invocation.session_id or "unknown")[:key_length]
	path = invocation.arg("filePath", "path") or "unknown"
	return f"{utc_now()} | {session} | {invocation.tool} | {path}\n"


def _append(path: Path, line: str) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	with open(path, "a", encoding="utf-8") as f:
		f.write(line)


class AuditGuard(Guard):
	"""Appends one line per executed write/edit. Best-effort; never raises."""
	name = "audit"

	def __init__(self, directory: PathLike, key_length: int = 7, tools: Iterable[str] = MUTATING_TOOLS):
		self.directory = directory
		self.key_length = key_length
		self.tools = frozenset(tools)

	async def after(self, invocation: ToolInvocation) -> None:
		try:
			line = format_audit_line(invocation, self.key_length)
			await asyncio.to_thread(_append, audit_log_path(self.directory), line)
		except Exception as e:
			logger.debug(f"Audit log write failed: {e}")
