"""swarm-dispatch MCP server."""

from mcp.server.fastmcp import FastMCP

from .config import get_config
from .logging_config import setup_logging
from .tools import register_all_tools


def create_server() -> FastMCP:
	"""Build the FastMCP server for the configured project."""
	config = get_config()
	setup_logging(log_dir=config.log_dir)
	mcp = FastMCP("swarm-dispatch")
	register_all_tools(mcp, config)
	return mcp


def main() -> None:
	"""Run the server over stdio."""
	create_server().run()


if __name__ == "__main__":
	main()
