"""Swarm module - Task planning, worker sessions, result extraction and dispatch."""

from .client import OpencodeSessionClient, SessionClientError, WorkerSessionClient
from .dispatcher import ActiveSwarms, SwarmDispatcher, SwarmOptions
from .messages import ExtractionFailure, WorkerOutput
from .planner import AgentTask, DispatchOutcome, DispatchResult, TaskInputError

__all__ = [
	"OpencodeSessionClient",
	"SessionClientError",
	"WorkerSessionClient",
	"ActiveSwarms",
	"SwarmDispatcher",
	"SwarmOptions",
	"ExtractionFailure",
	"WorkerOutput",
	"AgentTask",
	"DispatchOutcome",
	"DispatchResult",
	"TaskInputError",
]
