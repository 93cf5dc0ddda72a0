"""
Notifications - user-facing status messages (toasts in a host UI).

Notification failures never affect the caller: a broken notifier is logged
and ignored.
"""

import logging
import threading
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class NotifyVariant(str, Enum):
	"""Severity of a notification."""
	INFO = "info"
	SUCCESS = "success"
	WARNING = "warning"
	ERROR = "error"


class Notifier(Protocol):
	"""Anything that can show a short titled message to the user."""

	async def notify(self, title: str, message: str, variant: NotifyVariant = NotifyVariant.INFO) -> None:
		...


class LoggingNotifier:
	"""Notifier that writes to the log. Used when there is no UI."""

	_LEVELS = {
		NotifyVariant.INFO: logging.INFO,
		NotifyVariant.SUCCESS: logging.INFO,
		NotifyVariant.WARNING: logging.WARNING,
		NotifyVariant.ERROR: logging.ERROR,
	}

	def __init__(self, name: str = __name__):
		self._logger = logging.getLogger(name)

	async def notify(self, title: str, message: str, variant: NotifyVariant = NotifyVariant.INFO) -> None:
		self._logger.log(self._LEVELS.get(NotifyVariant(variant), logging.INFO), f"{title}: {message}")


class RecordingNotifier:
	"""Notifier that keeps every notification in memory."""

	def __init__(self):
		self.sent: list[tuple[str, str, NotifyVariant]] = []

	async def notify(self, title: str, message: str, variant: NotifyVariant = NotifyVariant.INFO) -> None:
		self.sent.append((title, message, NotifyVariant(variant)))


async def safe_notify(
	notifier: Optional[Notifier],
	title: str,
	message: str,
	variant: NotifyVariant = NotifyVariant.INFO,
) -> None:
	"""Send a notification, logging (not raising) any failure."""
	if notifier is None:
		return
	try:
		await notifier.notify(title, message, variant)
	except Exception as e:
		logger.debug(f"Notification '{title}' failed: {e}")


class NotifiedSessions:
	"""Sessions that have already been greeted. Scoped to one process."""

	def __init__(self):
		self._seen: set[str] = set()
		self._lock = threading.Lock()

	def mark(self, session_id: str) -> bool:
		"""Record a session. True the first time it is seen."""
		with self._lock:
			if session_id in self._seen:
				return False
			self._seen.add(session_id)
			return True

	def __contains__(self, session_id: object) -> bool:
		with self._lock:
			return session_id in self._seen

	def __len__(self) -> int:
		with self._lock:
			return len(self._seen)

	def reset(self) -> None:
		"""Forget every session."""
		with self._lock:
			self._seen.clear()


class SessionGreeter:
	"""Greets each session once, on its first chat message."""

	def __init__(self, notifier: Optional[Notifier], sessions: Optional[NotifiedSessions] = None):
		self.notifier = notifier
		self.sessions = sessions if sessions is not None else NotifiedSessions()

	async def on_chat_message(self, session_id: str, agent: Optional[str] = None) -> bool:
		"""
		Returns:
			True if a greeting was sent
		"""
		if not self.sessions.mark(session_id):
			return False
		label = agent.upper() if agent else "UNKNOWN"
		await safe_notify(self.notifier, f"Session // {label}", f"{label} online.")
		return True
