"""Registry module - JSON plan and swarm registries under a project's .ai/ dir."""

from .models import PlanRecord, PlanStatus, SwarmRecord, SwarmStatus, SwarmSummary, TaskRecord, TaskStatus
from .store import RegistryStore

__all__ = [
	"PlanRecord",
	"PlanStatus",
	"SwarmRecord",
	"SwarmStatus",
	"SwarmSummary",
	"TaskRecord",
	"TaskStatus",
	"RegistryStore",
]
