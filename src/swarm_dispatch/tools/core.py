"""Core health check tool."""

import json

from mcp.server.fastmcp import FastMCP

from .. import __version__
from ..config import Config
from ..registry.session_plans import plan_registry
from ..registry.store import ai_dir, list_plan_artifacts
from ..registry.swarm_records import swarm_registry


def register_core_tools(mcp: FastMCP, config: Config) -> None:
	"""Register core tools."""

	@mcp.tool()
	async def health_check() -> str:
		"""
		Check the health of the swarm-dispatch server.
		Returns paths, registry state and configured limits.
		"""
		project = config.project_dir
		status = {
			"server": "running",
			"version": __version__,
			"project_dir": str(project),
			"ai_dir_exists": ai_dir(project).is_dir(),
			"plan_artifacts": len(list_plan_artifacts(project)),
			"plan_registry_exists": plan_registry.path(project).exists(),
			"swarm_registry_exists": swarm_registry.path(project).exists(),
			"config_dir": str(config.config_dir),
			"log_dir": str(config.log_dir),
			"opencode_url": config.opencode_url,
			"concurrency": config.concurrency,
			"task_timeout_seconds": config.task_timeout_seconds,
			"max_swarm_records": config.max_swarm_records,
		}
		return json.dumps(status, indent=2)
