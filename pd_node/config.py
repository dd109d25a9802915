"""
pd-node Configuration Management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional, List

# Try to import tomllib (Python 3.11+) or tomli as fallback
try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore
    except ImportError:
        tomllib = None  # type: ignore

from pd_node.bridge.bridge import BridgeConfig
from pd_node.bridge.discovery import RuntimeType


# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "pd-node"
DEFAULT_CONFIG_FILE = "config.toml"

ENV_PREFIX = "PD_NODE_"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class BridgeSettings:
    """Configuration for the bridge transport and supervision."""

    # Pump interval when pd-node drives the scheduler itself (seconds)
    poll_interval: float = 0.001

    # Delay between SIGTERM and SIGKILL on shutdown (seconds)
    grace_period: float = 0.1

    # Read sizes and limits
    read_chunk_size: int = 4096
    max_frame_size: int = 1_048_576
    max_frames_per_pump: int = 0  # 0 = unlimited


@dataclass
class RuntimeSettings:
    """Configuration for runtime selection."""

    # Runtime executable (auto-detect if None)
    executable: Optional[str] = None

    # Preferred runtime when several are installed: "bun" or "node"
    preferred: Optional[str] = None

    # Wrapper script (bundled wrapper.js if None)
    wrapper_path: Optional[Path] = None

    @property
    def preferred_type(self) -> Optional[RuntimeType]:
        if not self.preferred:
            return None
        try:
            return RuntimeType[self.preferred.upper()]
        except KeyError:
            return None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class PdNodeConfig:
    """Main configuration container for pd-node."""

    config_dir: Path = DEFAULT_CONFIG_DIR

    bridge: BridgeSettings = field(default_factory=BridgeSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_bridge_config(self) -> BridgeConfig:
        """Build the bridge configuration from these settings."""
        return BridgeConfig(
            poll_interval=self.bridge.poll_interval,
            grace_period=self.bridge.grace_period,
            read_chunk_size=self.bridge.read_chunk_size,
            max_frame_size=self.bridge.max_frame_size,
            max_frames_per_pump=self.bridge.max_frames_per_pump,
        )


def default_config_path(env_prefix: str = ENV_PREFIX) -> Path:
    """Get the config file path, honoring the CONFIG_DIR environment override."""
    env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir) / DEFAULT_CONFIG_FILE
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = ENV_PREFIX
) -> PdNodeConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/pd-node/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = PdNodeConfig()

    if config_path is None:
        config_path = default_config_path(env_prefix)

    # Load from file if exists
    if config_path.exists() and tomllib is not None:
        config = _load_from_file(config_path, config)

    # Override with environment variables
    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: PdNodeConfig) -> PdNodeConfig:
    """Load configuration from a TOML file."""
    if tomllib is None:
        return config

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)

        if "bridge" in data:
            for key, value in data["bridge"].items():
                if hasattr(config.bridge, key):
                    setattr(config.bridge, key, value)

        if "runtime" in data:
            for key, value in data["runtime"].items():
                if key == "wrapper_path" and value:
                    config.runtime.wrapper_path = Path(value).expanduser()
                elif hasattr(config.runtime, key):
                    setattr(config.runtime, key, value or None)

        if "logging" in data:
            for key, value in data["logging"].items():
                if key == "file" and value:
                    config.logging.file = Path(value).expanduser()
                elif hasattr(config.logging, key):
                    setattr(config.logging, key, value)

        if "config_dir" in data:
            config.config_dir = Path(data["config_dir"])

    except Exception as e:
        print(f"Warning: Failed to load config from {path}: {e}")

    return config


def _load_from_env(config: PdNodeConfig, prefix: str) -> PdNodeConfig:
    """Load configuration from environment variables."""

    # Bridge settings
    if env_val := os.environ.get(f"{prefix}POLL_INTERVAL"):
        config.bridge.poll_interval = float(env_val)
    if env_val := os.environ.get(f"{prefix}GRACE_PERIOD"):
        config.bridge.grace_period = float(env_val)
    if env_val := os.environ.get(f"{prefix}MAX_FRAME_SIZE"):
        config.bridge.max_frame_size = int(env_val)

    # Runtime settings
    if env_val := os.environ.get(f"{prefix}RUNTIME"):
        config.runtime.executable = env_val
    if env_val := os.environ.get(f"{prefix}PREFERRED_RUNTIME"):
        config.runtime.preferred = env_val.lower()
    if env_val := os.environ.get(f"{prefix}WRAPPER"):
        config.runtime.wrapper_path = Path(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()
    if env_val := os.environ.get(f"{prefix}LOG_FILE"):
        config.logging.file = Path(env_val)

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)

    return config


def get_default_config() -> PdNodeConfig:
    """Get the default configuration."""
    return PdNodeConfig()


# Global configuration instance (lazy-loaded)
_global_config: Optional[PdNodeConfig] = None


def get_config() -> PdNodeConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: PdNodeConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_config(config: Optional[PdNodeConfig] = None) -> List[ValidationError]:
    """
    Validate configuration values.

    Args:
        config: Configuration to validate (default: global configuration)

    Returns:
        List of validation errors and warnings (empty if valid)
    """
    if config is None:
        config = get_config()

    errors: List[ValidationError] = []

    # Bridge
    if config.bridge.poll_interval <= 0:
        errors.append(ValidationError("bridge.poll_interval", "Must be greater than 0", "error"))
    elif config.bridge.poll_interval > 0.1:
        errors.append(ValidationError(
            "bridge.poll_interval",
            "Intervals above 100ms add noticeable message latency",
            "warning",
        ))
    if config.bridge.grace_period < 0:
        errors.append(ValidationError("bridge.grace_period", "Must not be negative", "error"))
    if config.bridge.read_chunk_size <= 0:
        errors.append(ValidationError("bridge.read_chunk_size", "Must be greater than 0", "error"))
    if config.bridge.max_frame_size < config.bridge.read_chunk_size:
        errors.append(ValidationError(
            "bridge.max_frame_size",
            "Must be at least bridge.read_chunk_size",
            "error",
        ))
    if config.bridge.max_frames_per_pump < 0:
        errors.append(ValidationError("bridge.max_frames_per_pump", "Must not be negative", "error"))

    # Runtime
    if config.runtime.preferred and config.runtime.preferred_type is None:
        errors.append(ValidationError(
            "runtime.preferred",
            f"Unknown runtime '{config.runtime.preferred}' (expected 'bun' or 'node')",
            "error",
        ))
    if config.runtime.wrapper_path and not config.runtime.wrapper_path.is_file():
        errors.append(ValidationError(
            "runtime.wrapper_path",
            f"File not found: {config.runtime.wrapper_path}",
            "error",
        ))

    # Logging
    if config.logging.level.upper() not in LOG_LEVELS:
        errors.append(ValidationError(
            "logging.level",
            f"Invalid level '{config.logging.level}' (expected one of {', '.join(LOG_LEVELS)})",
            "error",
        ))

    return errors


def _config_to_dict(config: PdNodeConfig) -> dict[str, Any]:
    """Convert configuration to a JSON-serializable dictionary."""

    def convert(value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [convert(v) for v in value]
        return value

    return convert(asdict(config))


def export_config_json(config: PdNodeConfig) -> str:
    """Export configuration as a JSON string."""
    return json.dumps(_config_to_dict(config), indent=2)
