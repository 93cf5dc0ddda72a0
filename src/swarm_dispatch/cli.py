"""CLI for swarm-dispatch: serve, plans, clean, dispatch, swarms, check and doctor."""

import argparse
import asyncio
import json
import os
import platform
import sys
from importlib.metadata import version as pkg_version
from pathlib import Path

from .commands import CommandInvocation, build_command_router
from .config import Config, get_config, reset_config

CORE_DEPS = ["mcp", "pydantic", "httpx", "platformdirs", "rich"]


def _config(args: argparse.Namespace) -> Config:
	"""Global config, pointed at --project when given."""
	project = getattr(args, "project", None)
	if project:
		os.environ["SWARM_DISPATCH_PROJECT_DIR"] = str(Path(project).expanduser().resolve())
		reset_config()
	return get_config()


def _parse_args_pairs(pairs: list[str]) -> dict[str, str]:
	"""Turn ["key=value", ...] into a dict."""
	parsed = {}
	for pair in pairs:
		key, sep, value = pair.partition("=")
		if not sep or not key:
			print(f"Invalid --arg (expected key=value): {pair}")
			sys.exit(2)
		parsed[key] = value
	return parsed


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server over stdio."""
	_config(args)
	from .server import main as serve_main
	serve_main()


def cmd_plans(args: argparse.Namespace) -> None:
	"""Plan artifacts with their registry status."""
	from .registry.session_plans import plan_statuses
	from .registry.store import list_plan_artifacts
	from .views import render_plans

	config = _config(args)
	statuses = asyncio.run(plan_statuses(config.project_dir))
	render_plans(list_plan_artifacts(config.project_dir), statuses)


def _run_command(config: Config, command: str, arguments: str = "") -> str:
	router = build_command_router(config.project_dir, key_length=config.session_key_length)
	result = asyncio.run(router(CommandInvocation(command=command, arguments=arguments)))
	return result.text


def cmd_clean(args: argparse.Namespace) -> None:
	"""Delete every markdown artifact under .ai/ and the plan registry."""
	config = _config(args)
	print(_run_command(config, "clean"))


def cmd_dispatch(args: argparse.Namespace) -> None:
	"""Validate plan names and print the dispatch payload."""
	from .swarm.planner import DispatchOutcome, plan_dispatch

	config = _config(args)
	result = asyncio.run(plan_dispatch(config.project_dir, " ".join(args.names)))
	print(result.render())
	if result.outcome in (DispatchOutcome.INVALID_NAMES, DispatchOutcome.MISSING_PLANS):
		sys.exit(1)


def cmd_swarms(args: argparse.Namespace) -> None:
	"""List recorded swarms, or show one in detail."""
	from .registry.swarm_records import list_swarms, lookup_swarm
	from .views import render_swarm_detail, render_swarm_list

	config = _config(args)
	if args.swarm_id:
		record = asyncio.run(lookup_swarm(config.project_dir, args.swarm_id))
		if record is None:
			print(f"No swarm found with ID: {args.swarm_id}")
			sys.exit(1)
		render_swarm_detail(record)
		return

	records = asyncio.run(list_swarms(config.project_dir))
	render_swarm_list(records[:max(args.limit, 0)])


def cmd_check(args: argparse.Namespace) -> None:
	"""Evaluate a tool call against the guard chain without side effects."""
	from .guards import ToolInvocation, build_guard_chain
	from .views import render_verdict

	config = _config(args)
	chain = build_guard_chain(config.project_dir, config)
	invocation = ToolInvocation(tool=args.tool, session_id=args.session, args=_parse_args_pairs(args.arg))
	verdict = asyncio.run(chain.evaluate(invocation))
	if args.json:
		print(json.dumps({"tool": args.tool, **verdict.to_dict()}, indent=2))
	else:
		render_verdict(args.tool, verdict)
	if not verdict.allowed:
		sys.exit(1)


def _check_server_startup() -> tuple[str, str | None]:
	"""Build the server and count its tools. Returns (status, issue_or_none)."""
	try:
		from .server import create_server
		tools = asyncio.run(create_server().list_tools())
		return f"OK ({len(tools)} tools registered)", None
	except Exception as e:
		return f"FAILED ({e})", f"Server startup failed: {e}"


def _check_opencode(config: Config) -> tuple[str, str | None]:
	"""Probe the worker session server."""
	from .swarm.client import OpencodeSessionClient

	async def probe() -> bool:
		async with OpencodeSessionClient(config.opencode_url, config.opencode_password, timeout=5.0) as client:
			return await client.health()

	if asyncio.run(probe()):
		return "reachable", None
	return "unreachable", f"Worker session server not reachable at {config.opencode_url}"


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("swarm-dispatch doctor")
	print(f"{'=' * 40}")

	config = _config(args)
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			print(f"    {dep:22s} {pkg_version(dep)}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Config:")
	print(f"    config.toml:         {'present' if config.config_file.exists() else 'not found (using defaults)'}")
	print(f"    project:             {config.project_dir}")
	print(f"    log dir:             {config.log_dir}")
	print(f"    concurrency:         {config.concurrency}")
	print(f"    task timeout:        {config.task_timeout_seconds}s")
	print()

	print("  Server:")
	server_status, server_issue = _check_server_startup()
	print(f"    {server_status}")
	if server_issue:
		issues.append(server_issue)

	opencode_status, opencode_issue = _check_opencode(config)
	print(f"    opencode:            {opencode_status} ({config.opencode_url})")
	if opencode_issue:
		issues.append(opencode_issue)

	print()
	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="swarm-dispatch",
		description="Plan registry, policy guards and concurrent worker swarms for agent sessions",
	)
	common = argparse.ArgumentParser(add_help=False)
	common.add_argument("--project", type=str, default=None, help="Project directory (default: cwd)")
	subparsers = parser.add_subparsers(dest="command")

	serve_parser = subparsers.add_parser("serve", parents=[common], help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	plans_parser = subparsers.add_parser("plans", parents=[common], help="List plan artifacts")
	plans_parser.set_defaults(func=cmd_plans)

	clean_parser = subparsers.add_parser("clean", parents=[common], help="Delete .ai/ markdown and the plan registry")
	clean_parser.set_defaults(func=cmd_clean)

	dispatch_parser = subparsers.add_parser("dispatch", parents=[common], help="Validate plans for batch dispatch")
	dispatch_parser.add_argument("names", nargs="*", help="Plan names (default: every plan not yet executed)")
	dispatch_parser.set_defaults(func=cmd_dispatch)

	swarms_parser = subparsers.add_parser("swarms", parents=[common], help="Recorded swarms")
	swarms_parser.add_argument("swarm_id", nargs="?", default=None, help="Swarm ID for detail view")
	swarms_parser.add_argument("--limit", type=int, default=20, help="Max swarms to list")
	swarms_parser.set_defaults(func=cmd_swarms)

	check_parser = subparsers.add_parser("check", parents=[common], help="Evaluate a tool call against the guards")
	check_parser.add_argument("tool", help="Tool name (e.g. sandbox_exec, read, task)")
	check_parser.add_argument("--arg", action="append", default=[], help="Tool argument as key=value (repeatable)")
	check_parser.add_argument("--session", type=str, default="", help="Calling session id")
	check_parser.add_argument("--json", action="store_true", help="Print the verdict as JSON")
	check_parser.set_defaults(func=cmd_check)

	doctor_parser = subparsers.add_parser("doctor", parents=[common], help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	return parser


def main(argv: list[str] | None = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)
