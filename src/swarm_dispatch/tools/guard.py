"""Guard inspection tool."""

import json
import logging

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..guards import ToolInvocation, build_guard_chain

logger = logging.getLogger(__name__)


def register_guard_tools(mcp: FastMCP, config: Config) -> None:
	"""Register guard tools."""
	chain = build_guard_chain(config.project_dir, config)

	@mcp.tool()
	async def check_tool_call(tool: str, args: str = "{}", session_id: str = "") -> str:
		"""
		Evaluate a proposed tool call against the guard chain without running
		it or recording anything.

		Args:
			tool: Tool name (e.g. "sandbox_exec", "read", "task")
			args: JSON object of tool arguments
			session_id: Calling session id
		"""
		try:
			parsed = json.loads(args) if args else {}
		except json.JSONDecodeError as e:
			return json.dumps({"error": f"args is not valid JSON: {e}"}, indent=2)
		if not isinstance(parsed, dict):
			return json.dumps({"error": "args must be a JSON object"}, indent=2)

		verdict = await chain.evaluate(ToolInvocation(tool=tool, session_id=session_id, args=parsed))
		return json.dumps({"tool": tool, **verdict.to_dict()}, indent=2)
