"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "grove"
APP_AUTHOR = "grove"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Agent invocation
	api_key: str = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
	model: str = "claude-opus-4-6"
	max_tokens: int = 16000
	request_timeout: float = 300.0

	# Heartbeat
	default_dice_sides: int = 3
	history_limit: int = 20
	heartbeat_interval: float = 30.0
	max_concurrency: int = 0

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "grove.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


PATH_FIELDS = {"config_dir", "data_dir"}
INT_FIELDS = {"max_tokens", "default_dice_sides", "history_limit", "max_concurrency"}
FLOAT_FIELDS = {"request_timeout", "heartbeat_interval"}


def _coerce(attr: str, val):
	if attr in PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if attr in INT_FIELDS:
		return int(val)
	if attr in FLOAT_FIELDS:
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply GROVE_* environment variable overrides."""
	env_map = {
		"GROVE_CONFIG_DIR": "config_dir",
		"GROVE_DATA_DIR": "data_dir",
		"GROVE_MODEL": "model",
		"GROVE_MAX_TOKENS": "max_tokens",
		"GROVE_REQUEST_TIMEOUT": "request_timeout",
		"GROVE_DICE_SIDES": "default_dice_sides",
		"GROVE_HISTORY_LIMIT": "history_limit",
		"GROVE_HEARTBEAT_INTERVAL": "heartbeat_interval",
		"GROVE_MAX_CONCURRENCY": "max_concurrency",
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
		# The API key only comes from the environment
		if key == "api_key":
			continue
		if hasattr(config, key):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
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
