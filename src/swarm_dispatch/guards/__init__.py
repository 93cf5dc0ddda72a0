"""
Policy guards applied around worker tool calls.

Chain order: retired tool names, destructive commands, secret reads,
delegation policy, then plan registration (a side effect that must only
happen for calls that passed every check). Auditing runs after execution.
"""

from typing import Optional

from ..config import Config
from ..registry.store import PathLike
from .audit import AuditGuard
from .base import GuardChain, GuardDecision, GuardRejection, GuardVerdict, ToolInvocation
from .delegation import DelegationGuard, build_persona_policies
from .plans import PlanRegistrationGuard
from .safety import DeprecatedAliasGuard, DestructiveCommandGuard, SecretFileGuard

__all__ = [
	"GuardChain",
	"GuardDecision",
	"GuardRejection",
	"GuardVerdict",
	"ToolInvocation",
	"build_guard_chain",
]


def build_guard_chain(directory: PathLike, config: Optional[Config] = None) -> GuardChain:
	"""The standard guard chain for a project."""
	key_length = config.session_key_length if config else 7
	policies = build_persona_policies(
		implementer=config.implementer_agent if config else "implementer",
		operator=config.operator_agent if config else "operator",
	)
	return GuardChain([
		DeprecatedAliasGuard(),
		DestructiveCommandGuard(),
		SecretFileGuard(),
		DelegationGuard(policies),
		PlanRegistrationGuard(directory, key_length),
		AuditGuard(directory, key_length),
	])
