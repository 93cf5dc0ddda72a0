"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import platformdirs

APP_NAME = "swarm-dispatch"
APP_AUTHOR = "swarm-dispatch"

MAX_CONCURRENCY = 20


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	config_file: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Project the registries live under (its .ai/ directory)
	project_dir: Path = field(default_factory=Path.cwd)

	# Registry tunables
	session_key_length: int = 7
	max_swarm_records: int = 100

	# Swarm execution
	concurrency: int = 5
	task_timeout_seconds: float = 600.0
	implementer_agent: str = "implementer"
	operator_agent: str = "operator"
	worktree_dir: Optional[Path] = None

	# Worker session server
	opencode_url: str = "http://127.0.0.1:4096"
	opencode_password: str = ""

	def __post_init__(self) -> None:
		self.config_file = self.config_dir / "config.toml"
		self.log_dir = self.data_dir / "logs"
		self.concurrency = max(1, min(int(self.concurrency), MAX_CONCURRENCY))
		self.session_key_length = max(1, int(self.session_key_length))
		self.max_swarm_records = max(1, int(self.max_swarm_records))

	@property
	def resolved_worktree_dir(self) -> Path:
		"""Directory holding per-task worktrees."""
		if self.worktree_dir is not None:
			return self.worktree_dir
		return self.project_dir / ".ai" / ".worktrees"

	@property
	def task_timeout(self) -> Optional[float]:
		"""Per-task timeout in seconds, or None when disabled."""
		return self.task_timeout_seconds if self.task_timeout_seconds > 0 else None

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir", "project_dir", "worktree_dir"}
_INT_FIELDS = {"session_key_length", "max_swarm_records", "concurrency"}
_FLOAT_FIELDS = {"task_timeout_seconds"}


def _coerce(attr: str, value: object) -> object:
	"""Convert a raw env/toml value to the type of the named field."""
	if attr in _PATH_FIELDS:
		return Path(os.path.expanduser(str(value)))
	if attr in _INT_FIELDS:
		return int(value)
	if attr in _FLOAT_FIELDS:
		return float(value)
	return value


def _apply_env_overrides(config: Config) -> Config:
	"""Apply SWARM_DISPATCH_* environment variable overrides."""
	env_map = {
		"SWARM_DISPATCH_CONFIG_DIR": "config_dir",
		"SWARM_DISPATCH_DATA_DIR": "data_dir",
		"SWARM_DISPATCH_PROJECT_DIR": "project_dir",
		"SWARM_DISPATCH_WORKTREE_DIR": "worktree_dir",
		"SWARM_DISPATCH_SESSION_KEY_LENGTH": "session_key_length",
		"SWARM_DISPATCH_MAX_SWARM_RECORDS": "max_swarm_records",
		"SWARM_DISPATCH_CONCURRENCY": "concurrency",
		"SWARM_DISPATCH_TASK_TIMEOUT": "task_timeout_seconds",
		"SWARM_DISPATCH_IMPLEMENTER": "implementer_agent",
		"SWARM_DISPATCH_OPERATOR": "operator_agent",
		"SWARM_DISPATCH_OPENCODE_URL": "opencode_url",
		"SWARM_DISPATCH_OPENCODE_PASSWORD": "opencode_password",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key) and key not in ("config_file", "log_dir"):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# Env may relocate the config dir, so resolve it before reading the toml
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config


def reset_config() -> None:
	"""Drop the cached global config (used by tests and the CLI --project flag)."""
	global _config
	_config = None
