"""Rich terminal views for plans, swarms and guard verdicts."""

from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .guards import GuardVerdict
from .registry.models import PlanStatus, SwarmRecord, SwarmStatus, TaskStatus
from .registry.swarm_records import get_swarm_summary
from .swarm.merge import build_merge_instructions

TASK_STYLES = {
	TaskStatus.PENDING: "dim",
	TaskStatus.RUNNING: "yellow",
	TaskStatus.COMPLETED: "green",
	TaskStatus.FAILED: "red",
}

SWARM_STYLES = {
	SwarmStatus.RUNNING: "yellow",
	SwarmStatus.COMPLETED: "green",
	SwarmStatus.FAILED: "red",
	SwarmStatus.PARTIAL: "magenta",
}

PLAN_STYLES = {
	PlanStatus.CREATED: "cyan",
	PlanStatus.REVIEWED: "blue",
	PlanStatus.EXECUTED: "green",
	PlanStatus.FAILED: "red",
}


def format_timestamp(iso_str: Optional[str]) -> str:
	"""Relative time (e.g. '2m ago') for an ISO timestamp, or '-'."""
	if not iso_str:
		return "-"
	try:
		dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
		if dt.tzinfo is None:
			dt = dt.replace(tzinfo=timezone.utc)
		total_secs = int((datetime.now(timezone.utc) - dt).total_seconds())
		if total_secs < 0:
			return iso_str[:19]
		if total_secs < 60:
			return f"{total_secs}s ago"
		if total_secs < 3600:
			return f"{total_secs // 60}m ago"
		if total_secs < 86400:
			return f"{total_secs // 3600}h ago"
		return f"{total_secs // 86400}d ago"
	except (ValueError, TypeError):
		return str(iso_str)[:19]


def truncate(text: Optional[str], max_len: int = 60) -> str:
	"""Shorten text for table display."""
	if not text:
		return ""
	text = " ".join(text.split())
	if len(text) <= max_len:
		return text
	return text[:max_len - 3] + "..."


def styled(value: str, style: str) -> str:
	return f"[{style}]{value}[/{style}]"


def render_plans(
	names: list[str],
	statuses: dict[str, PlanStatus],
	console: Optional[Console] = None,
) -> None:
	"""Plan artifacts with their registry status."""
	console = console or Console()
	if not names:
		console.print("[dim]No plan files found in .ai/.[/dim]")
		return

	table = Table(title="Plans")
	table.add_column("Plan", style="cyan")
	table.add_column("Status")
	for name in names:
		status = statuses.get(name)
		if status is None:
			table.add_row(name, styled("untracked", "dim"))
		else:
			table.add_row(name, styled(status.value, PLAN_STYLES[status]))
	console.print(table)


def render_swarm_list(records: list[SwarmRecord], console: Optional[Console] = None) -> None:
	"""One row per recorded swarm, newest first."""
	console = console or Console()
	if not records:
		console.print("[dim]No swarms recorded yet.[/dim]")
		return

	table = Table(title="Swarms")
	table.add_column("Swarm", style="cyan")
	table.add_column("Status")
	table.add_column("Created")
	table.add_column("Done", justify="right")
	table.add_column("Failed", justify="right")
	table.add_column("Pending", justify="right")
	for record in records:
		summary = get_swarm_summary(record)
		table.add_row(
			record.swarm_id[:8],
			styled(record.status.value, SWARM_STYLES[record.status]),
			format_timestamp(record.created_at),
			f"{summary.completed}/{summary.total}",
			str(summary.failed),
			str(summary.pending),
		)
	console.print(table)


def render_swarm_detail(record: SwarmRecord, console: Optional[Console] = None) -> None:
	"""Summary panel plus a task table for a single swarm."""
	console = console or Console()
	summary = get_swarm_summary(record)

	header = (
		f"[bold]Status:[/bold] {styled(record.status.value, SWARM_STYLES[record.status])}  |  "
		f"[bold]Tasks:[/bold] {summary.total}  |  "
		f"[bold]Completed:[/bold] {summary.completed}  |  "
		f"[bold]Failed:[/bold] {summary.failed}  |  "
		f"[bold]Created:[/bold] {format_timestamp(record.created_at)}"
	)
	if record.completed_at:
		header += f"  |  [bold]Finished:[/bold] {format_timestamp(record.completed_at)}"
	console.print(Panel(header, title=f"Swarm {record.swarm_id}", border_style="cyan"))

	table = Table()
	table.add_column("Task", style="cyan")
	table.add_column("Agent")
	table.add_column("Status")
	table.add_column("Branch")
	table.add_column("Result / Error")
	for task in record.tasks:
		table.add_row(
			task.task_id,
			task.agent,
			styled(task.status.value, TASK_STYLES[task.status]),
			task.branch or "",
			truncate(task.error or task.result),
		)
	console.print(table)

	instructions = build_merge_instructions(record)
	if instructions and record.completed_at:
		console.print(Panel(Markdown(instructions), title="Merge", border_style="blue"))


def render_verdict(tool: str, verdict: GuardVerdict, console: Optional[Console] = None) -> None:
	"""Allowed/rejected panel for a guard evaluation."""
	console = console or Console()
	if verdict.allowed:
		console.print(Panel(f"[green]{tool}: allowed[/green]", border_style="green"))
		return
	console.print(Panel(
		f"[red]{tool}: rejected by {verdict.guard}[/red]\n\n{verdict.message}",
		border_style="red",
	))
