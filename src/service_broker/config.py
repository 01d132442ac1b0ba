"""Broker configuration from environment variables.

Environment Variables:
    SERVICE_BROKER_SERVICE_CONFIG: Operator configuration map (JSON or YAML
        text, or a path to a .json/.yaml/.yml file). Keyed by service id.
    SERVICE_BROKER_POLL_INTERVAL: Seconds between operation polls (default 1.0)
    SERVICE_BROKER_POLL_TIMEOUT: Seconds before a poll loop gives up
        (default 3600, 0 disables the timeout)
    SERVICE_BROKER_DB_PATH: SQLite file for persisted records
        (default ~/.service-broker/state.db)
    SERVICE_BROKER_LOG_LEVEL: Log level used by configure_logging (default INFO)
    SERVICE_BROKER_COMPATIBILITY_<TOGGLE>: Feature toggles, e.g.
        SERVICE_BROKER_COMPATIBILITY_ENABLE_CATALOG_SCHEMAS=true

Feature toggles are declared once on a ToggleSet and read lazily, so a toggle
flipped in the environment (or through explicit overrides) takes effect on the
next check.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "SERVICE_BROKER_"

_TRUE_VALUES = frozenset({"1", "t", "true", "yes", "on"})


def property_to_env(prop: str) -> str:
    """Convert a dotted/dashed property name to its environment variable.

    Example:
        >>> property_to_env("compatibility.enable-catalog-schemas")
        'SERVICE_BROKER_COMPATIBILITY_ENABLE_CATALOG_SCHEMAS'
    """
    return ENV_PREFIX + prop.replace(".", "_").replace("-", "_").upper()


@dataclass(frozen=True)
class Toggle:
    """A feature that operators can enable or disable.

    Attributes:
        name: Toggle name, e.g. "enable-catalog-schemas"
        default: Value used when nothing else sets it
        description: Operator-facing explanation
        property_prefix: Namespace of the owning ToggleSet
    """

    name: str
    default: bool
    description: str
    property_prefix: str = ""

    @property
    def property_name(self) -> str:
        return self.property_prefix + self.name

    @property
    def env_var(self) -> str:
        return property_to_env(self.property_name)

    def is_active(self, overrides: Mapping[str, bool] | None = None) -> bool:
        """Resolve the toggle: explicit override, then environment, then default."""
        if overrides and self.name in overrides:
            return overrides[self.name]
        raw = os.getenv(self.env_var)
        if raw is None or not raw.strip():
            return self.default
        return raw.strip().lower() in _TRUE_VALUES


@dataclass
class ToggleSet:
    """Registry of toggles sharing a property prefix."""

    property_prefix: str = ""
    _toggles: dict[str, Toggle] = field(default_factory=dict)

    def toggle(self, name: str, default: bool, description: str) -> Toggle:
        """Declare a toggle and return it."""
        if name in self._toggles:
            raise ValueError(f"Toggle '{name}' is already declared")
        tgl = Toggle(name, default, description, self.property_prefix)
        self._toggles[name] = tgl
        return tgl

    def toggles(self) -> list[Toggle]:
        """All declared toggles sorted by name."""
        return sorted(self._toggles.values(), key=lambda t: t.name)


FEATURES = ToggleSet("compatibility.")

ENABLE_CATALOG_SCHEMAS = FEATURES.toggle(
    "enable-catalog-schemas",
    False,
    "Enable generating JSONSchema for the service catalog.",
)

# Services carrying one of these tags are hidden unless the toggle is active.
LIFECYCLE_TAG_TOGGLES: dict[str, Toggle] = {
    "preview": FEATURES.toggle(
        "enable-preview-services", True, "Enable services that are new to the broker this release."
    ),
    "unmaintained": FEATURES.toggle(
        "enable-unmaintained-services", False, "Enable broker services that are unmaintained."
    ),
    "eol": FEATURES.toggle(
        "enable-eol-services", False, "Enable broker services that are end of life."
    ),
    "beta": FEATURES.toggle(
        "enable-gcp-beta-services", True, "Enable services that are in beta with no SLA."
    ),
    "deprecated": FEATURES.toggle(
        "enable-gcp-deprecated-services", False, "Enable services that use deprecated components."
    ),
    "terraform": FEATURES.toggle(
        "enable-terraform-services", False, "Enable services that use the Terraform back-end."
    ),
}


def get_poll_interval() -> float:
    """Seconds between polls of a pending operation (default 1.0, minimum 0.01)."""
    try:
        return max(0.01, float(os.getenv(f"{ENV_PREFIX}POLL_INTERVAL", "1.0")))
    except ValueError:
        return 1.0


def get_poll_timeout() -> float | None:
    """Seconds before a poll loop gives up; None when disabled with 0."""
    try:
        timeout = float(os.getenv(f"{ENV_PREFIX}POLL_TIMEOUT", "3600"))
    except ValueError:
        return 3600.0
    return timeout if timeout > 0 else None


def get_db_path() -> Path:
    """SQLite file used by SqliteRecordStore; parent directories are created."""
    raw = os.getenv(f"{ENV_PREFIX}DB_PATH", "")
    path = Path(raw).expanduser() if raw.strip() else Path.home() / ".service-broker" / "state.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_service_config_source() -> str:
    """Raw operator configuration: inline JSON/YAML or the content of a file path."""
    raw = os.getenv(f"{ENV_PREFIX}SERVICE_CONFIG", "")
    candidate = raw.strip()
    if candidate and "\n" not in candidate and candidate.endswith((".json", ".yaml", ".yml")):
        path = Path(candidate).expanduser()
        if not path.is_file():
            raise FileNotFoundError(f"Service config file not found: {path}")
        logger.info(f"Reading service config from {path}")
        return path.read_text(encoding="utf-8")
    return raw


class BrokerConfig(BaseModel):
    """Snapshot of the broker's process configuration.

    Example:
        config = BrokerConfig.from_env()
        registry = ServiceRegistry(service_config=ServiceConfigMap.parse(config.service_config))
    """

    model_config = ConfigDict(frozen=True)

    service_config: str = ""
    poll_interval: float = 1.0
    poll_timeout: float | None = 3600.0
    toggle_overrides: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def from_env(cls) -> BrokerConfig:
        return cls(
            service_config=get_service_config_source(),
            poll_interval=get_poll_interval(),
            poll_timeout=get_poll_timeout(),
        )

    def is_enabled(self, toggle: Toggle) -> bool:
        return toggle.is_active(self.toggle_overrides)


def configure_logging() -> None:
    """Configure root logging to stderr from SERVICE_BROKER_LOG_LEVEL.

    Intended for host processes; the library itself never configures handlers.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper()
    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid {ENV_PREFIX}LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


__all__ = [
    "ENABLE_CATALOG_SCHEMAS",
    "ENV_PREFIX",
    "FEATURES",
    "LIFECYCLE_TAG_TOGGLES",
    "BrokerConfig",
    "Toggle",
    "ToggleSet",
    "configure_logging",
    "get_db_path",
    "get_poll_interval",
    "get_poll_timeout",
    "get_service_config_source",
    "property_to_env",
]
