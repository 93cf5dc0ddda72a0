"""MCP tool registration - modular tool definitions."""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..notify import Notifier
from ..swarm.client import WorkerSessionClient
from ..swarm.dispatcher import ActiveSwarms
from .core import register_core_tools
from .guard import register_guard_tools
from .plans import register_plans_tools
from .swarm import register_swarm_tools

logger = logging.getLogger(__name__)


def register_all_tools(
	mcp: FastMCP,
	config: Config,
	client: Optional[WorkerSessionClient] = None,
	active: Optional[ActiveSwarms] = None,
	notifier: Optional[Notifier] = None,
) -> ActiveSwarms:
	"""
	Register all MCP tools.

	Returns:
		The ActiveSwarms registry the swarm tools share
	"""
	active = active if active is not None else ActiveSwarms()
	register_core_tools(mcp, config)
	register_plans_tools(mcp, config)
	register_guard_tools(mcp, config)
	register_swarm_tools(mcp, config, client=client, active=active, notifier=notifier)
	logger.debug(f"Registered tools for project {config.project_dir}")
	return active
