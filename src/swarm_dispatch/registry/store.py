"""
Registry Store - Crash-safe JSON mapping persisted under the project's .ai/ dir.

Features:
- Soft reads: a missing, unparsable or non-object file reads as {}
- Atomic writes: sibling temp file, fsync, then os.replace over the target
- In-process read-modify-write serialized per file path
- Async wrappers that run the blocking I/O in a worker thread

There is no cross-process locking. Two processes sharing a project dir race
on the whole document and the last writer wins; the rename only guarantees
that no reader ever sees a half-written file.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

AI_DIR = ".ai"
PLAN_PREFIX = "plan-"
PLAN_SUFFIX = ".md"
SAFE_PLAN_NAME = re.compile(r"^[a-z0-9][a-z0-9-]*$")

PathLike = Union[str, Path]

_locks: dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
	with _locks_guard:
		lock = _locks.get(path)
		if lock is None:
			lock = threading.Lock()
			_locks[path] = lock
		return lock


def ai_dir(directory: PathLike) -> Path:
	"""The .ai/ directory of a project."""
	return Path(directory) / AI_DIR


def plan_artifact_path(directory: PathLike, plan: str) -> Path:
	"""Path of the plan artifact for a plan name."""
	return ai_dir(directory) / f"{PLAN_PREFIX}{plan}{PLAN_SUFFIX}"


def list_plan_artifacts(directory: PathLike) -> list[str]:
	"""
	Names of every plan artifact in the project, sorted.

	Args:
		directory: Project root

	Returns:
		Plan names (the <name> in .ai/plan-<name>.md)
	"""
	folder = ai_dir(directory)
	if not folder.is_dir():
		return []
	names = []
	for entry in folder.iterdir():
		if not entry.is_file():
			continue
		if entry.name.startswith(PLAN_PREFIX) and entry.name.endswith(PLAN_SUFFIX):
			name = entry.name[len(PLAN_PREFIX):-len(PLAN_SUFFIX)]
			if name:
				names.append(name)
	return sorted(names)


class RegistryStore:
	"""
	One JSON registry file, e.g. .ai/.session-plans.json.

	Usage:
		store = RegistryStore(".session-plans.json")
		data = store.read(project_dir)
		store.update(project_dir, lambda data: {**data, "abc1234": {...}})
	"""

	def __init__(self, filename: str):
		self.filename = filename

	def path(self, directory: PathLike) -> Path:
		"""Absolute path of this registry inside a project."""
		return ai_dir(directory) / self.filename

	def read(self, directory: PathLike) -> dict:
		"""
		Load the registry mapping.

		Never raises for bad content: a missing file, bytes that are not UTF-8,
		invalid JSON, or a top-level value that is not an object read as an
		empty mapping.
		"""
		path = self.path(directory)
		try:
			raw = path.read_text(encoding="utf-8")
		except FileNotFoundError:
			return {}
		except UnicodeDecodeError as e:
			logger.warning(f"Ignoring undecodable registry {path}: {e}")
			return {}
		except OSError as e:
			logger.warning(f"Could not read registry {path}: {e}")
			return {}

		try:
			data = json.loads(raw)
		except json.JSONDecodeError as e:
			logger.warning(f"Ignoring corrupt registry {path}: {e}")
			return {}

		if not isinstance(data, dict):
			logger.warning(f"Ignoring registry {path}: top level is {type(data).__name__}, not an object")
			return {}
		return data

	def write(self, directory: PathLike, data: dict) -> None:
		"""
		Persist the mapping atomically.

		Raises:
			OSError: on any I/O failure. The previous file is left untouched.
		"""
		path = self.path(directory)
		path.parent.mkdir(parents=True, exist_ok=True)
		payload = json.dumps(data, indent=2, sort_keys=True) + "\n"

		fd, tmp_name = tempfile.mkstemp(
			prefix=f"{self.filename}.", suffix=".tmp", dir=str(path.parent)
		)
		try:
			with os.fdopen(fd, "w", encoding="utf-8") as f:
				f.write(payload)
				f.flush()
				os.fsync(f.fileno())
			os.replace(tmp_name, path)
		except BaseException:
			try:
				os.unlink(tmp_name)
			except FileNotFoundError:
				pass
			raise

	def update(self, directory: PathLike, mutate: Callable[[dict], Optional[dict]]) -> dict:
		"""
		Read, transform and write the mapping as one step within this process.

		Args:
			directory: Project root
			mutate: Receives the current mapping, returns the mapping to store,
				or None to leave the file untouched.

		Returns:
			The mapping now on disk
		"""
		path = self.path(directory)
		with _lock_for(path.resolve()):
			current = self.read(directory)
			updated = mutate(current)
			if updated is None:
				return current
			self.write(directory, updated)
			return updated

	async def aread(self, directory: PathLike) -> dict:
		"""Async variant of read()."""
		return await asyncio.to_thread(self.read, directory)

	async def awrite(self, directory: PathLike, data: dict) -> None:
		"""Async variant of write()."""
		await asyncio.to_thread(self.write, directory, data)

	async def aupdate(self, directory: PathLike, mutate: Callable[[dict], Optional[dict]]) -> dict:
		"""Async variant of update()."""
		return await asyncio.to_thread(self.update, directory, mutate)
