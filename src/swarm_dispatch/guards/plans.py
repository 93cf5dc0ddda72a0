"""Plan registration - records plan artifacts as workers write them."""

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from ..registry.session_plans import DEFAULT_SESSION_KEY_LENGTH, register_plan
from ..registry.store import SAFE_PLAN_NAME, PathLike, ai_dir
from .base import Guard, ToolInvocation

logger = logging.getLogger(__name__)

PLAN_ARTIFACT_PATH = re.compile(r"\.ai/plan-([^/]+)\.md$")


def plan_name_from_path(path: str) -> Optional[str]:
	"""The plan name if `path` is a safely named plan artifact inside an .ai/ directory."""
	match = PLAN_ARTIFACT_PATH.search(path.replace("\\", "/"))
	if match is None or not SAFE_PLAN_NAME.match(match.group(1)):
		return None
	return match.group(1)


class PlanRegistrationGuard(Guard):
	"""Registers .ai/plan-<name>.md writes against the writing session. Never rejects."""
	name = "plan_registration"
	side_effects = True

	def __init__(
		self,
		directory: PathLike,
		key_length: int = DEFAULT_SESSION_KEY_LENGTH,
		tools: Iterable[str] = ("write",),
	):
		self.directory = directory
		self.key_length = key_length
		self.tools = frozenset(tools)

	def in_project(self, path: str) -> bool:
		"""True when `path` resolves to a file directly inside this project's .ai/ dir."""
		target = Path(path.replace("\\", "/"))
		if not target.is_absolute():
			target = Path(self.directory) / target
		return target.resolve().parent == ai_dir(self.directory).resolve()

	async def before(self, invocation: ToolInvocation) -> None:
		path = invocation.arg("filePath")
		if not path or not invocation.session_id:
			return
		plan = plan_name_from_path(path)
		if plan is None:
			return
		if not self.in_project(path):
			logger.debug(f"Not registering plan {plan}: {path} is outside {self.directory}")
			return
		await register_plan(self.directory, invocation.session_id, plan, self.key_length)
