"""
Safety guards: retired tool names, destructive shell commands, secret files.
"""

import logging
import re
from typing import Iterable, Optional

from .base import Guard, ToolInvocation

logger = logging.getLogger(__name__)

COMMAND_TOOLS = frozenset({"bash", "sandbox_exec"})
READ_TOOLS = frozenset({"read"})

DESTRUCTIVE_PATTERNS: tuple[re.Pattern, ...] = (
	re.compile(r"rm\s+-rf\s+[^/\s]"),                 # recursive force-delete of a relative path
	re.compile(r"git\s+push\s+.*--force"),            # remote history rewrite
	re.compile(r"git\s+reset\s+--hard\s+HEAD~[2-9]"),
	re.compile(r"DROP\s+TABLE", re.IGNORECASE),
	re.compile(r">\s*/dev/(sd[a-z]|nvme)"),           # raw block device writes
)

SECRET_EXTENSIONS = re.compile(r"\.(env|pem|key|p12|pfx|secret|credentials)$", re.IGNORECASE)

MAX_ECHO_LENGTH = 100

# retired tool -> (replacement, example call)
DEFAULT_ALIASES: dict[str, tuple[str, str]] = {
	"bash": ("sandbox_exec", 'sandbox_exec({"command": "ls -la"})'),
}


class DeprecatedAliasGuard(Guard):
	"""Rejects retired tool names and points at the replacement."""
	name = "deprecated_alias"

	def __init__(self, aliases: Optional[dict[str, tuple[str, str]]] = None):
		self.aliases = dict(DEFAULT_ALIASES if aliases is None else aliases)
		self.tools = frozenset(self.aliases)

	async def before(self, invocation: ToolInvocation) -> None:
		replacement, example = self.aliases[invocation.tool]
		raise self.reject(invocation, "\n".join([
			f"The `{invocation.tool}` tool is not available. Use `{replacement}` instead.",
			"",
			"Example:",
			f"  {example}",
		]))


class DestructiveCommandGuard(Guard):
	"""Rejects shell commands matching a known destructive pattern."""
	name = "destructive_command"

	def __init__(
		self,
		tools: Iterable[str] = COMMAND_TOOLS,
		patterns: Iterable[re.Pattern] = DESTRUCTIVE_PATTERNS,
		max_echo: int = MAX_ECHO_LENGTH,
	):
		self.tools = frozenset(tools)
		self.patterns = tuple(patterns)
		self.max_echo = max_echo

	def matches(self, command: str) -> Optional[re.Pattern]:
		"""The first destructive pattern found in a command."""
		return next((p for p in self.patterns if p.search(command)), None)

	async def before(self, invocation: ToolInvocation) -> None:
		command = invocation.arg("command", "cmd") or ""
		if self.matches(command):
			raise self.reject(
				invocation, f'Blocked destructive command: "{command[:self.max_echo]}"'
			)


class SecretFileGuard(Guard):
	"""Rejects reads of files whose extension marks them as secrets."""
	name = "secret_file"

	def __init__(self, tools: Iterable[str] = READ_TOOLS, pattern: re.Pattern = SECRET_EXTENSIONS):
		self.tools = frozenset(tools)
		self.pattern = pattern

	async def before(self, invocation: ToolInvocation) -> None:
		path = invocation.arg("filePath", "path") or ""
		if self.pattern.search(path):
			raise self.reject(invocation, f'Blocked: reading secrets file "{path}" is not permitted.')
