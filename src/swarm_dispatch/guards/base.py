"""
Guard chain - policy checks that run around every worker tool call.

A guard looks only at the tool names it declares and ignores everything
else. Pre-execution guards either return (allow) or raise GuardRejection;
the chain stops at the first rejection, so later guards (and their side
effects) never see a rejected call. Post-execution guards observe only.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class ToolInvocation:
	"""A tool call as seen by the guards."""
	tool: str
	session_id: str = ""
	args: dict = field(default_factory=dict)
	call_id: Optional[str] = None
	result: Any = None

	def arg(self, *names: str) -> Optional[str]:
		"""First non-empty string argument among `names`, in order."""
		for name in names:
			value = self.args.get(name) if isinstance(self.args, dict) else None
			if isinstance(value, str) and value:
				return value
		return None


class GuardRejection(PermissionError):
	"""A guard refused a tool call. The message is meant for the caller verbatim."""

	def __init__(self, guard: str, message: str):
		self.guard = guard
		self.message = message
		super().__init__(message)

	def __str__(self) -> str:
		return self.message


class GuardDecision(str, Enum):
	"""Outcome of evaluating a tool call."""
	ALLOWED = "allowed"
	REJECTED = "rejected"


@dataclass
class GuardVerdict:
	"""Non-raising result of GuardChain.evaluate()."""
	decision: GuardDecision
	guard: Optional[str] = None
	message: Optional[str] = None

	@property
	def allowed(self) -> bool:
		return self.decision == GuardDecision.ALLOWED

	def to_dict(self) -> dict:
		data: dict[str, Any] = {"decision": self.decision.value}
		if self.guard:
			data["guard"] = self.guard
		if self.message:
			data["message"] = self.message
		return data


class Guard:
	"""
	Base guard. Subclasses override before() and/or after().

	Attributes:
		name: Identifier used in rejections and logs
		tools: Tool names this guard handles; empty means every tool
		side_effects: True when before() changes state; such guards are
			skipped by dry-run evaluation
	"""
	name = "guard"
	tools: frozenset[str] = frozenset()
	side_effects = False

	def applies(self, tool: str) -> bool:
		return not self.tools or tool in self.tools

	async def before(self, invocation: ToolInvocation) -> None:
		"""Inspect a call before it runs. Raise GuardRejection to block it."""
		return None

	async def after(self, invocation: ToolInvocation) -> None:
		"""Observe a call after it ran. Must not raise."""
		return None

	def reject(self, invocation: ToolInvocation, message: str) -> GuardRejection:
		"""Log and build a rejection for the caller to raise."""
		logging.getLogger(type(self).__module__).warning(
			f"[{self.name}] rejected {invocation.tool} from session {invocation.session_id[:7] or '-'}: "
			f"{message.splitlines()[0]}"
		)
		return GuardRejection(self.name, message)


class GuardChain:
	"""Ordered guards applied to every tool call."""

	def __init__(self, guards: list[Guard]):
		self.guards = list(guards)

	def __iter__(self):
		return iter(self.guards)

	def __len__(self) -> int:
		return len(self.guards)

	def get(self, name: str) -> Optional[Guard]:
		"""A guard by name."""
		return next((g for g in self.guards if g.name == name), None)

	async def before(self, invocation: ToolInvocation, dry_run: bool = False) -> None:
		"""
		Run every applicable pre-execution guard in order.

		Raises:
			GuardRejection: from the first guard that refuses the call
		"""
		for guard in self.guards:
			if not guard.applies(invocation.tool):
				continue
			if dry_run and guard.side_effects:
				continue
			await guard.before(invocation)

	async def after(self, invocation: ToolInvocation) -> None:
		"""Run every applicable post-execution guard in order."""
		for guard in self.guards:
			if guard.applies(invocation.tool):
				await guard.after(invocation)

	async def evaluate(self, invocation: ToolInvocation, dry_run: bool = True) -> GuardVerdict:
		"""
		Like before(), but returns a verdict instead of raising.

		Args:
			invocation: The proposed call
			dry_run: Skip guards with side effects (the default)
		"""
		try:
			await self.before(invocation, dry_run=dry_run)
		except GuardRejection as e:
			return GuardVerdict(decision=GuardDecision.REJECTED, guard=e.guard, message=e.message)
		return GuardVerdict(decision=GuardDecision.ALLOWED)
