"""Runtime settings.

Sources, lowest to highest precedence:
1. Defaults below
2. fleetcraft.yaml (./, ~/.config/fleetcraft/, /etc/fleetcraft/, or --config)
3. FLEETCRAFT_* environment variables
4. Command-line flags (passed as overrides)

Environment variables:
- FLEETCRAFT_FORKS: Hosts worked on at once (default: 5)
- FLEETCRAFT_CALL_TIMEOUT: Seconds per provider/executor call (default: none)
- FLEETCRAFT_RETRIES: Extra attempts after a timed-out call (default: 0)
- FLEETCRAFT_RETRY_DELAY: Seconds before the first retry (default: 1)
- FLEETCRAFT_PARALLELISM: Concurrent changes during apply (default: 1)
- FLEETCRAFT_ON_FAILURE: halt or continue (default: halt)
- FLEETCRAFT_LOG_LEVEL: Console log level (default: INFO)
- FLEETCRAFT_AUDIT_DIR: Audit log directory (default: ~/.fleetcraft)
"""
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ParseError
from .providers import ProviderRegistry, build_registry
from .reconcile import ApplyOptions
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "fleetcraft.yaml"

CONFIG_SEARCH_PATHS = [
    Path.cwd,
    lambda: Path.home() / ".config" / "fleetcraft",
    lambda: Path("/etc/fleetcraft"),
]

# Field name -> converter for environment values
_ENV_FIELDS = {
    "forks": int,
    "call_timeout": float,
    "retries": int,
    "retry_delay": float,
    "parallelism": int,
    "on_failure": str,
    "log_level": str,
    "audit_dir": str,
}


@dataclass
class FleetcraftSettings:
    """Settings shared by the CLI commands."""
    forks: int = 5
    call_timeout: Optional[float] = None
    retries: int = 0
    retry_delay: float = 1.0
    parallelism: int = 1
    on_failure: str = "halt"
    log_level: str = "INFO"
    audit_dir: Optional[str] = None
    providers: dict[str, dict[str, Any]] = field(default_factory=lambda: {"*": {"kind": "memory"}})
    source: Optional[str] = None

    def __post_init__(self):
        if self.forks < 1:
            raise ParseError(f"forks must be at least 1, got {self.forks}")
        if self.parallelism < 1:
            raise ParseError(f"parallelism must be at least 1, got {self.parallelism}")
        if self.retries < 0:
            raise ParseError(f"retries cannot be negative, got {self.retries}")
        if self.on_failure not in ("halt", "continue"):
            raise ParseError(f"on_failure must be 'halt' or 'continue', got '{self.on_failure}'")

    @staticmethod
    def find_config_file(explicit: Optional[str] = None) -> Optional[Path]:
        """The explicit path, or the first fleetcraft.yaml on the search path."""
        if explicit:
            path = Path(explicit).expanduser()
            if not path.exists():
                raise ParseError(f"Config file not found: {path}")
            return path
        for base in CONFIG_SEARCH_PATHS:
            candidate = base() / CONFIG_FILENAME
            if candidate.is_file():
                return candidate
        return None

    @classmethod
    def from_file(cls, path: Path, base: Optional["FleetcraftSettings"] = None) -> "FleetcraftSettings":
        """Layer a YAML config file over ``base`` (defaults when omitted)."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}")
        if not isinstance(config, Mapping):
            raise ParseError(f"Config file {path} must be a mapping")

        known = {f.name for f in fields(cls)} - {"source"}
        unknown = set(config) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings in {path}: {', '.join(sorted(unknown))}")

        settings = base or cls()
        values = {k: v for k, v in config.items() if k in known}
        if "providers" in values and not isinstance(values["providers"], Mapping):
            raise ParseError(f"'providers' in {path} must be a mapping")
        logger.debug(f"Loaded settings from {path}")
        return replace(settings, **values, source=str(path))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional["FleetcraftSettings"] = None) -> "FleetcraftSettings":
        """Layer FLEETCRAFT_* environment variables over ``base``."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, convert in _ENV_FIELDS.items():
            key = f"FLEETCRAFT_{name.upper()}"
            if key not in environ or environ[key] == "":
                continue
            try:
                values[name] = convert(environ[key])
            except ValueError:
                raise ParseError(f"{key} has an invalid value: {environ[key]!r}")
        return replace(base or cls(), **values)

    @classmethod
    def load(cls, config_path: Optional[str] = None,
             environ: Optional[Mapping[str, str]] = None,
             overrides: Optional[Mapping[str, Any]] = None) -> "FleetcraftSettings":
        """Resolve settings from every source; None overrides are ignored."""
        settings = cls()
        path = cls.find_config_file(config_path)
        if path is not None:
            settings = cls.from_file(path, settings)
        settings = cls.from_env(environ, settings)
        values = {k: v for k, v in (overrides or {}).items() if v is not None}
        return replace(settings, **values)

    def retry_policy(self) -> Optional[RetryPolicy]:
        if self.retries <= 0:
            return None
        return RetryPolicy(max_attempts=self.retries + 1, delay=self.retry_delay)

    def apply_options(self) -> ApplyOptions:
        return ApplyOptions(
            parallelism=self.parallelism,
            on_failure=self.on_failure,
            timeout=self.call_timeout,
            retry=self.retry_policy(),
        )

    def provider_registry(self) -> ProviderRegistry:
        return build_registry(self.providers)
