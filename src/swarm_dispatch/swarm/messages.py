"""
Result Extractor - turns a worker session's final reply into a verdict.

Workers are asked to end with a JSON object:

	{"status": "complete" | "partial" | "failed",
	 "files_modified": [...], "summary": "...", "blockers": [...]}

Malformed output never raises. Every failure is an ExtractionFailure that
keeps whatever text the worker produced.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from .client import SessionMessage, WorkerSessionClient

logger = logging.getLogger(__name__)

FENCE = "```"


class WorkerOutput(BaseModel):
	"""
	Structured outcome reported by a worker.

	Only status, files_modified and summary decide whether the reply is
	usable. Optional and extra fields never reject a reply.
	"""
	model_config = ConfigDict(extra="allow")

	status: StrictStr
	files_modified: list[str]
	summary: StrictStr
	blockers: Optional[list[str]] = Field(default=None)

	@field_validator("files_modified", mode="before")
	@classmethod
	def _files_as_list(cls, value):
		if not isinstance(value, list):
			raise ValueError("files_modified must be a list")
		return [item if isinstance(item, str) else str(item) for item in value]

	@field_validator("blockers", mode="before")
	@classmethod
	def _lenient_blockers(cls, value):
		if isinstance(value, list):
			return [item if isinstance(item, str) else str(item) for item in value]
		if isinstance(value, str) and value.strip():
			return [value.strip()]
		return None

	@property
	def failed(self) -> bool:
		return self.status.strip().lower() == "failed"


@dataclass
class ExtractionFailure:
	"""The worker said something, but not a usable structured outcome."""
	raw: str
	error: str


ExtractionResult = Union[WorkerOutput, ExtractionFailure]


def strip_markdown_fence(text: str) -> str:
	"""
	Remove one fenced code block enclosing the whole text.

	Only applies when the first and last lines both start with ```;
	anything else is returned trimmed but otherwise unchanged.
	"""
	trimmed = text.strip()
	lines = trimmed.split("\n")
	if len(lines) < 2:
		return trimmed
	if not (lines[0].startswith(FENCE) and lines[-1].startswith(FENCE)):
		return trimmed
	return "\n".join(lines[1:-1]).strip()


def validate_worker_output(value: object) -> Optional[WorkerOutput]:
	"""Schema check for a decoded JSON value. None when the shape is wrong."""
	if not isinstance(value, dict):
		return None
	try:
		return WorkerOutput.model_validate(value)
	except ValidationError:
		return None


def last_assistant_message(messages: list[SessionMessage]) -> Optional[SessionMessage]:
	"""The most recent assistant message, or None."""
	for message in reversed(messages):
		if message.role == "assistant":
			return message
	return None


def message_text(message: SessionMessage) -> str:
	"""Text fragments of a message joined in order and trimmed."""
	texts = [part.text or "" for part in message.parts if part.type == "text"]
	return "\n".join(texts).strip()


def parse_worker_text(text: str) -> ExtractionResult:
	"""Parse the (possibly fenced) final text of a worker."""
	cleaned = strip_markdown_fence(text)
	try:
		decoded = json.loads(cleaned)
	except json.JSONDecodeError as e:
		return ExtractionFailure(raw=text, error=str(e))

	output = validate_worker_output(decoded)
	if output is None:
		return ExtractionFailure(raw=text, error="Missing required fields in output")
	return output


def interpret_messages(messages: list[SessionMessage]) -> ExtractionResult:
	"""
	Extract the verdict from a session's message list.

	Args:
		messages: Session messages, oldest first

	Returns:
		WorkerOutput, or ExtractionFailure with a diagnostic
	"""
	if not messages:
		return ExtractionFailure(raw="", error="No session messages found")

	message = last_assistant_message(messages)
	if message is None:
		return ExtractionFailure(raw="", error="No assistant message found")

	if message.error:
		return ExtractionFailure(raw="", error=message.error)

	text = message_text(message)
	if not text:
		return ExtractionFailure(raw="", error="Assistant message had no text")

	return parse_worker_text(text)


async def extract_worker_output(client: WorkerSessionClient, session_id: str) -> ExtractionResult:
	"""
	Fetch a session's messages and extract the worker's verdict.

	Client errors (network, server) propagate; only malformed worker output
	is folded into ExtractionFailure.
	"""
	messages = await client.list_messages(session_id)
	result = interpret_messages(messages)
	if isinstance(result, ExtractionFailure):
		logger.debug(f"Session {session_id}: unusable worker output ({result.error})")
	return result
