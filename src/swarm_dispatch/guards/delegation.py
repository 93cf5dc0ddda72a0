"""
Delegation guard - which personas a worker may hand work to directly.

Personas are looked up in a policy table keyed by name. Personas not in the
table may be delegated to freely. The delegation target is read from the
call's arguments by an ordered list of extraction strategies; the first
non-empty result wins.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from .base import Guard, ToolInvocation

logger = logging.getLogger(__name__)

DELEGATION_TOOLS = frozenset({"task"})

TargetStrategy = Callable[[dict], Optional[str]]


def field_strategy(field_name: str) -> TargetStrategy:
	"""Strategy reading a non-empty string argument by name."""
	def extract(args: dict) -> Optional[str]:
		value = args.get(field_name)
		return value if isinstance(value, str) and value else None
	extract.__name__ = f"field_{field_name}"
	return extract


# `subagent_type` is the host schema; `category` is an older caller convention
DEFAULT_TARGET_STRATEGIES: tuple[TargetStrategy, ...] = (
	field_strategy("subagent_type"),
	field_strategy("category"),
)


def extract_target(args: object, strategies: Iterable[TargetStrategy] = DEFAULT_TARGET_STRATEGIES) -> Optional[str]:
	"""Lower-cased delegation target, or None when no strategy finds one."""
	if not isinstance(args, dict):
		return None
	for strategy in strategies:
		target = strategy(args)
		if target:
			return target.lower()
	return None


class DelegationCapability(str, Enum):
	"""How a persona may be reached."""
	DIRECT = "direct"                   # any worker may delegate
	ENTRY_POINTS_ONLY = "entry_points"  # only through the listed commands
	RESTRICTED = "restricted"           # privileged; not delegable by workers


@dataclass(frozen=True)
class PersonaPolicy:
	"""Delegation policy for one persona."""
	persona: str
	capability: DelegationCapability
	entry_points: tuple[tuple[str, str], ...] = ()
	reason: str = ""

	def rejection_message(self) -> Optional[str]:
		"""Message for a direct delegation attempt, or None if it is allowed."""
		if self.capability == DelegationCapability.DIRECT:
			return None

		if self.capability == DelegationCapability.ENTRY_POINTS_ONLY:
			lines = [
				f"Direct delegation to @{self.persona} via `task` is forbidden.",
				"",
				f"{self.persona} is invoked exclusively through slash commands:",
			]
			lines += [f"  {usage}  - {purpose}" for usage, purpose in self.entry_points]
			lines += [
				"",
				f"Do NOT call task(... {self.persona} ...). Use the appropriate slash command instead.",
			]
			return "\n".join(lines)

		lines = [f"Direct delegation to @{self.persona} via `task` is restricted."]
		if self.reason:
			lines += ["", self.reason]
		lines += ["", "If you need to run a command, ask the user or route through an authorized agent."]
		return "\n".join(lines)


def build_persona_policies(
	implementer: str = "implementer",
	operator: str = "operator",
) -> dict[str, PersonaPolicy]:
	"""
	The default policy table.

	Args:
		implementer: Persona that edits code; reachable only via /synth and /apply
		operator: Persona with shell access; not delegable by workers
	"""
	policies = [
		PersonaPolicy(
			persona=implementer.lower(),
			capability=DelegationCapability.ENTRY_POINTS_ONLY,
			entry_points=(
				("/synth <request>", "execute a plan file"),
				("/apply <description>", "quick, surgical code edit"),
			),
		),
		PersonaPolicy(
			persona=operator.lower(),
			capability=DelegationCapability.RESTRICTED,
			reason=(
				f"{operator} has privileged access to `sandbox_exec` and shell execution. "
				"Only the coordinator and plan execution are authorized to delegate to it."
			),
		),
	]
	return {policy.persona: policy for policy in policies}


class DelegationGuard(Guard):
	"""Rejects delegation calls that target a non-delegable persona."""
	name = "delegation"

	def __init__(
		self,
		policies: Optional[dict[str, PersonaPolicy]] = None,
		tools: Iterable[str] = DELEGATION_TOOLS,
		strategies: Iterable[TargetStrategy] = DEFAULT_TARGET_STRATEGIES,
	):
		self.policies = {k.lower(): v for k, v in (policies or build_persona_policies()).items()}
		self.tools = frozenset(tools)
		self.strategies = tuple(strategies)

	def policy_for(self, persona: str) -> Optional[PersonaPolicy]:
		return self.policies.get(persona.lower())

	async def before(self, invocation: ToolInvocation) -> None:
		target = extract_target(invocation.args, self.strategies)
		if not target:
			return
		policy = self.policy_for(target)
		if policy is None:
			return
		message = policy.rejection_message()
		if message:
			raise self.reject(invocation, message)
		logger.debug(f"Delegation to {target} allowed")
