"""Plan registry tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..registry.session_plans import find_closest_plan, plan_statuses
from ..registry.session_plans import list_plans as list_plan_entries
from ..registry.store import list_plan_artifacts, plan_artifact_path


def register_plans_tools(mcp: FastMCP, config: Config) -> None:
	"""Register plan registry tools."""

	@mcp.tool()
	async def list_plans() -> str:
		"""
		List plan artifacts in .ai/ with their registry status, plus every
		registry entry (including ones whose artifact was deleted).
		"""
		project = config.project_dir
		statuses = await plan_statuses(project)
		entries = await list_plan_entries(project)
		return json.dumps({
			"plans": [
				{"plan": name, "status": statuses[name].value if name in statuses else "untracked"}
				for name in list_plan_artifacts(project)
			],
			"registry": [entry.to_json_dict() for entry in entries],
		}, indent=2)

	@mcp.tool()
	async def resolve_plan(partial: str) -> str:
		"""
		Resolve a partial plan name. A unique prefix match wins, then a unique
		substring match; ambiguous or unknown names return an error.

		Args:
			partial: Part of a plan name (case-insensitive)
		"""
		match = await find_closest_plan(config.project_dir, partial)
		if match is None:
			return json.dumps({"error": f'No unique plan matches "{partial}"'}, indent=2)
		return json.dumps({
			"plan": match.plan,
			"planFile": str(plan_artifact_path(config.project_dir, match.plan)),
			"entry": match.entry.to_json_dict() if match.entry else None,
		}, indent=2)
