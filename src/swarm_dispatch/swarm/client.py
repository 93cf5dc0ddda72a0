"""
Worker Session Client - the RPC surface used to run delegated work.

WorkerSessionClient is the interface the dispatcher depends on.
OpencodeSessionClient implements it over an opencode server's HTTP API:

	POST /session                    create a session
	POST /session/{id}/message       send a prompt and wait for the reply
	GET  /session/{id}/message       list the session's messages
	POST /session/{id}/abort         stop a running session
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass
class MessagePart:
	"""One content fragment of a message, tagged by type ("text", "tool", ...)."""
	type: str
	text: Optional[str] = None

	@classmethod
	def from_payload(cls, payload: Any) -> "MessagePart":
		if not isinstance(payload, dict):
			return cls(type="unknown")
		text = payload.get("text")
		return cls(
			type=str(payload.get("type") or "unknown"),
			text=None if text is None else str(text),
		)


@dataclass
class SessionMessage:
	"""A message in a worker session."""
	role: str
	parts: list[MessagePart] = field(default_factory=list)
	error: Optional[str] = None

	@classmethod
	def from_payload(cls, payload: Any) -> "SessionMessage":
		"""
		Build from an API message of the form {"info": {...}, "parts": [...]}.

		A non-string error marker is reduced to its name/message when it has
		one, else to a generic "Assistant error".
		"""
		if not isinstance(payload, dict):
			return cls(role="unknown")
		info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
		raw_parts = payload.get("parts") if isinstance(payload.get("parts"), list) else []
		return cls(
			role=str(info.get("role") or "unknown"),
			parts=[MessagePart.from_payload(p) for p in raw_parts],
			error=_error_marker(info.get("error")),
		)


def _error_marker(value: Any) -> Optional[str]:
	if not value:
		return None
	if isinstance(value, str):
		return value
	if isinstance(value, dict):
		data = value.get("data") if isinstance(value.get("data"), dict) else {}
		message = data.get("message") or value.get("message")
		if message:
			return str(message)
		if value.get("name"):
			return str(value["name"])
	return "Assistant error"


class WorkerSessionClient(Protocol):
	"""Interface to the service that runs worker sessions."""

	async def create_session(
		self,
		agent: str,
		title: Optional[str] = None,
		directory: Optional[str] = None,
	) -> str:
		"""Create a session for a persona and return its id."""
		...

	async def send_message(self, session_id: str, prompt: str, agent: Optional[str] = None) -> None:
		"""Send a prompt; returns once the worker has finished responding."""
		...

	async def list_messages(self, session_id: str) -> list[SessionMessage]:
		"""All messages of a session, oldest first."""
		...

	async def abort_session(self, session_id: str) -> None:
		"""Stop a running session."""
		...


class SessionClientError(RuntimeError):
	"""The worker session server returned an error or an unusable response."""
	pass


class OpencodeSessionClient:
	"""
	WorkerSessionClient backed by an opencode server.

	Usage:
		async with OpencodeSessionClient("http://127.0.0.1:4096") as client:
			session_id = await client.create_session("implementer")
			await client.send_message(session_id, "Do the thing")
			messages = await client.list_messages(session_id)
	"""

	def __init__(
		self,
		base_url: str,
		password: str = "",
		timeout: Optional[float] = 30.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	):
		"""
		Args:
			base_url: Server URL
			password: Server password (HTTP basic auth, user "opencode"); empty disables auth
			timeout: Timeout for short calls. send_message waits without a timeout;
				the dispatcher bounds it.
			transport: Optional httpx transport (tests use httpx.MockTransport)
		"""
		self.base_url = base_url.rstrip("/")
		self.password = password
		self._client = httpx.AsyncClient(
			base_url=self.base_url,
			timeout=timeout,
			headers=self._auth_headers(),
			transport=transport,
		)

	def _auth_headers(self) -> dict[str, str]:
		if not self.password:
			return {}
		token = base64.b64encode(f"opencode:{self.password}".encode("utf-8")).decode("ascii")
		return {"Authorization": f"Basic {token}"}

	async def __aenter__(self) -> "OpencodeSessionClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def close(self) -> None:
		"""Close the underlying HTTP client."""
		await self._client.aclose()

	async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
		try:
			resp = await self._client.request(method, path, **kwargs)
		except httpx.HTTPError as e:
			raise SessionClientError(f"{method} {path} failed: {e}") from e
		if resp.status_code >= 400:
			body = resp.text.strip().replace("\n", " ")
			raise SessionClientError(f"{method} {path} failed status={resp.status_code}; body={body[:300]}")
		return resp

	async def create_session(
		self,
		agent: str,
		title: Optional[str] = None,
		directory: Optional[str] = None,
	) -> str:
		params = {"directory": directory} if directory else None
		resp = await self._request(
			"POST", "/session", json={"title": title or agent}, params=params,
		)
		try:
			session_id = resp.json()["id"]
		except (ValueError, KeyError, TypeError) as e:
			raise SessionClientError(f"POST /session returned no session id: {e}") from e
		logger.debug(f"Created session {session_id} for {agent}")
		return str(session_id)

	async def send_message(self, session_id: str, prompt: str, agent: Optional[str] = None) -> None:
		payload: dict[str, Any] = {"parts": [{"type": "text", "text": prompt}]}
		if agent:
			payload["agent"] = agent
		await self._request(
			"POST", f"/session/{session_id}/message", json=payload, timeout=None,
		)

	async def list_messages(self, session_id: str) -> list[SessionMessage]:
		resp = await self._request("GET", f"/session/{session_id}/message")
		try:
			data = resp.json()
		except ValueError as e:
			raise SessionClientError(f"GET /session/{session_id}/message returned invalid JSON: {e}") from e
		if isinstance(data, dict) and isinstance(data.get("data"), list):
			data = data["data"]
		if not isinstance(data, list):
			return []
		return [SessionMessage.from_payload(item) for item in data]

	async def abort_session(self, session_id: str) -> None:
		await self._request("POST", f"/session/{session_id}/abort")

	async def health(self) -> bool:
		"""True when the server answers its health endpoint."""
		try:
			resp = await self._client.get("/global/health")
		except httpx.HTTPError:
			return False
		return resp.status_code == 200
