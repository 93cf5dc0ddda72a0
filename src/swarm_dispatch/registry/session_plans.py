"""
Plan Lifecycle Registry - which plan each session authored or is executing.

Stored as .ai/.session-plans.json, keyed by a short session key: the first
few characters of the full session id. Keys are collision-tolerant rather
than unique; two sessions sharing a prefix share (and overwrite) one entry.
The key length is a config tunable (session_key_length, default 7).

The plan artifact on disk (.ai/plan-<name>.md) is the source of truth for
whether a plan exists. Entries pointing at a deleted artifact read as absent.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from .models import PlanListing, PlanRecord, PlanStatus, safe_timestamp, utc_now
from .store import PathLike, RegistryStore, ai_dir, list_plan_artifacts, plan_artifact_path

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".session-plans.json"
DEFAULT_SESSION_KEY_LENGTH = 7

plan_registry = RegistryStore(REGISTRY_FILENAME)


def derive_session_key(session_id: str, length: int = DEFAULT_SESSION_KEY_LENGTH) -> str:
	"""Fixed-length prefix of a session id used as the registry key."""
	return session_id[:length]


def _parse_entry(key: str, value: object) -> Optional[PlanRecord]:
	try:
		return PlanRecord.model_validate(value)
	except ValidationError as e:
		logger.warning(f"Dropping malformed plan registry entry {key!r}: {e.error_count()} error(s)")
		return None


async def read_plan_registry(directory: PathLike) -> dict[str, PlanRecord]:
	"""All well-formed registry entries keyed by session key."""
	raw = await plan_registry.aread(directory)
	entries = {}
	for key, value in raw.items():
		record = _parse_entry(key, value)
		if record is not None:
			entries[key] = record
	return entries


async def register_plan(
	directory: PathLike,
	session_id: str,
	plan: str,
	key_length: int = DEFAULT_SESSION_KEY_LENGTH,
) -> PlanRecord:
	"""
	Associate a plan with a session, resetting it to `created`.

	Read-modify-write on the whole registry: concurrent writers from another
	process may overwrite each other (last writer wins).

	Args:
		directory: Project root
		session_id: Full session id of the author
		plan: Plan name
		key_length: Session key length

	Returns:
		The stored record
	"""
	key = derive_session_key(session_id, key_length)
	record = PlanRecord(plan=plan, created_at=utc_now(), status=PlanStatus.CREATED)

	def mutate(data: dict) -> dict:
		data[key] = record.to_json_dict()
		return data

	await plan_registry.aupdate(directory, mutate)
	logger.info(f"Registered plan '{plan}' for session {key}")
	return record


async def lookup_plan(
	directory: PathLike,
	session_id: str,
	key_length: int = DEFAULT_SESSION_KEY_LENGTH,
) -> Optional[PlanRecord]:
	"""The session's plan, or None if unknown or its artifact no longer exists."""
	key = derive_session_key(session_id, key_length)
	raw = await plan_registry.aread(directory)
	if key not in raw:
		return None
	record = _parse_entry(key, raw[key])
	if record is None:
		return None
	exists = await asyncio.to_thread(plan_artifact_path(directory, record.plan).is_file)
	if not exists:
		logger.debug(f"Plan '{record.plan}' for session {key} has no artifact; treating as absent")
		return None
	return record


async def update_plan_status(
	directory: PathLike,
	session_id: str,
	status: PlanStatus,
	key_length: int = DEFAULT_SESSION_KEY_LENGTH,
) -> Optional[PlanRecord]:
	"""
	Set the status of the session's plan.

	No-op (returns None) when the session has no entry.
	"""
	key = derive_session_key(session_id, key_length)
	updated: list[PlanRecord] = []

	def mutate(data: dict) -> Optional[dict]:
		if key not in data:
			return None
		record = _parse_entry(key, data[key])
		if record is None:
			return None
		record = record.model_copy(update={"status": PlanStatus(status)})
		data[key] = record.to_json_dict()
		updated.append(record)
		return data

	await plan_registry.aupdate(directory, mutate)
	if not updated:
		return None
	logger.info(f"Plan '{updated[0].plan}' for session {key} is now {PlanStatus(status).value}")
	return updated[0]


async def mark_plan_executed(directory: PathLike, plan: str) -> int:
	"""
	Mark every registry entry for a plan name as executed.

	Used when a plan is handed to the implementer by name rather than by the
	session that wrote it.

	Returns:
		Number of entries updated
	"""
	count = 0

	def mutate(data: dict) -> Optional[dict]:
		nonlocal count
		for key, value in list(data.items()):
			record = _parse_entry(key, value)
			if record is None or record.plan != plan:
				continue
			data[key] = record.model_copy(update={"status": PlanStatus.EXECUTED}).to_json_dict()
			count += 1
		return data if count else None

	await plan_registry.aupdate(directory, mutate)
	if count:
		logger.info(f"Marked plan '{plan}' executed ({count} entr{'y' if count == 1 else 'ies'})")
	return count


@dataclass
class PlanMatch:
	"""Result of fuzzy plan resolution."""
	plan: str
	entry: Optional[PlanRecord] = None


def match_plan_name(candidates: list[str], partial: str) -> Optional[str]:
	"""
	Resolve a partial name against candidate plan names, case-insensitively.

	A unique prefix match wins. Otherwise a unique substring match wins.
	Zero or several hits at both tiers resolve to None; ambiguity is never
	guessed.
	"""
	needle = partial.lower()
	prefix_hits = [name for name in candidates if name.lower().startswith(needle)]
	if len(prefix_hits) == 1:
		return prefix_hits[0]
	substring_hits = [name for name in candidates if needle in name.lower()]
	if len(substring_hits) == 1:
		return substring_hits[0]
	return None


async def find_closest_plan(directory: PathLike, partial: str) -> Optional[PlanMatch]:
	"""
	Resolve a partial plan name against the plan artifacts on disk.

	Returns:
		PlanMatch with the resolved name and its registry entry (if any),
		or None when nothing or more than one plan matches.
	"""
	candidates = await asyncio.to_thread(list_plan_artifacts, directory)
	matched = match_plan_name(candidates, partial)
	if matched is None:
		return None

	registry = await read_plan_registry(directory)
	entry = next((record for record in registry.values() if record.plan == matched), None)
	return PlanMatch(plan=matched, entry=entry)


async def list_plans(directory: PathLike) -> list[PlanListing]:
	"""Every registry entry with its session key and artifact freshness."""
	registry = await read_plan_registry(directory)

	async def to_listing(key: str, record: PlanRecord) -> PlanListing:
		exists = await asyncio.to_thread(plan_artifact_path(directory, record.plan).is_file)
		return PlanListing(
			plan=record.plan,
			created_at=record.created_at,
			status=record.status,
			session_key=key,
			file_exists=exists,
		)

	return list(await asyncio.gather(*(to_listing(k, r) for k, r in registry.items())))


async def plan_statuses(directory: PathLike) -> dict[str, PlanStatus]:
	"""
	Latest known status per plan name.

	When several sessions reference the same plan, the most recently
	created entry wins.
	"""
	registry = await read_plan_registry(directory)
	latest: dict[str, PlanRecord] = {}
	for record in registry.values():
		current = latest.get(record.plan)
		if current is None or safe_timestamp(record.created_at) >= safe_timestamp(current.created_at):
			latest[record.plan] = record
	return {name: record.status for name, record in latest.items()}


@dataclass
class ClearResult:
	"""Outcome of a bulk clear of .ai/ markdown artifacts."""
	deleted: list[str] = field(default_factory=list)
	errors: list[str] = field(default_factory=list)
	registry_removed: bool = False


def _clear_sync(directory: PathLike) -> ClearResult:
	result = ClearResult()
	folder = ai_dir(directory)
	if folder.is_dir():
		for entry in sorted(folder.iterdir()):
			if not (entry.is_file() and entry.suffix == ".md"):
				continue
			try:
				entry.unlink()
				result.deleted.append(entry.name)
			except OSError as e:
				result.errors.append(f"{entry.name}: {e}")

	registry_path = plan_registry.path(directory)
	try:
		registry_path.unlink()
		result.registry_removed = True
	except FileNotFoundError:
		pass
	except OSError as e:
		result.errors.append(f"{registry_path.name}: {e}")
	return result


async def clear_plans(directory: PathLike) -> ClearResult:
	"""Delete every .md file under .ai/ and drop the plan registry."""
	result = await asyncio.to_thread(_clear_sync, directory)
	logger.info(
		f"Cleared {len(result.deleted)} artifact(s) from {ai_dir(directory)}"
		f"{' and the plan registry' if result.registry_removed else ''}"
	)
	for error in result.errors:
		logger.warning(f"Clear failed for {error}")
	return result
