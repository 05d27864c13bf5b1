from __future__ import annotations
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from shared.log import get_logger
from shared.utils import is_http_url

from .errors import ConfigError

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "http://aeroduel.local:45045"
CONFIG_ENV = "AEROSIM_CONFIG"
SERVER_ENV = "AEROSIM_SERVER"


@dataclass(frozen=True)
class SlotConfig:
    label: str
    client_id: str
    entity_id: str
    display_name: str


def _default_slots() -> List[SlotConfig]:
    return [
        SlotConfig("Mobile 1", "sim-user-001", "sim-plane-001", "Foxtrot-4"),
        SlotConfig("Mobile 2", "sim-user-002", "sim-plane-002", "Delta-7"),
    ]


@dataclass
class SimulatorConfig:
    server_url: str = DEFAULT_SERVER_URL
    slots: List[SlotConfig] = field(default_factory=_default_slots)
    log_capacity: int = 20
    # None means wait forever; the harness itself imposes no deadline
    join_timeout: Optional[float] = None
    open_timeout: Optional[float] = None
    ping_interval: Optional[float] = 15.0
    ping_timeout: Optional[float] = 45.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _parse_slots(entries: Any) -> List[SlotConfig]:
    if not isinstance(entries, list) or not entries:
        raise ConfigError("'slots' must be a non-empty list")
    slots = []
    for i, e in enumerate(entries, start=1):
        if not isinstance(e, dict):
            raise ConfigError(f"slot {i} must be a mapping")
        client_id = e.get("userId") or e.get("client_id")
        entity_id = e.get("planeId") or e.get("entity_id")
        name = e.get("playerName") or e.get("display_name") or f"Pilot-{i}"
        if not isinstance(client_id, str) or not isinstance(entity_id, str):
            raise ConfigError(f"slot {i} needs string userId and planeId")
        slots.append(SlotConfig(
            label=str(e.get("label") or f"Mobile {i}"),
            client_id=client_id,
            entity_id=entity_id,
            display_name=str(name),
        ))
    if len({s.client_id for s in slots}) != len(slots):
        raise ConfigError("slot userIds must be unique")
    if len({s.entity_id for s in slots}) != len(slots):
        raise ConfigError("slot planeIds must be unique")
    return slots


def _optional_float(data: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    if key not in data:
        return default
    value = data[key]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number or null")
    return float(value)


def load_config(path: Optional[Path] = None, *, server_url: Optional[str] = None) -> SimulatorConfig:
    """
    Build the simulator configuration.

    Precedence (highest first): explicit server_url argument, AEROSIM_SERVER,
    the YAML file (path argument or AEROSIM_CONFIG), built-in defaults.
    """
    config = SimulatorConfig()

    if path is None and os.getenv(CONFIG_ENV):
        path = Path(os.environ[CONFIG_ENV])

    if path is not None:
        data = _read_yaml(path)
        logger.info(f"Loaded simulator config from {path}")
        if "server_url" in data:
            config.server_url = str(data["server_url"])
        if "slots" in data:
            config.slots = _parse_slots(data["slots"])
        if "log_capacity" in data:
            capacity = data["log_capacity"]
            if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
                raise ConfigError("'log_capacity' must be a positive integer")
            config.log_capacity = capacity
        config.join_timeout = _optional_float(data, "join_timeout", config.join_timeout)
        config.open_timeout = _optional_float(data, "open_timeout", config.open_timeout)
        config.ping_interval = _optional_float(data, "ping_interval", config.ping_interval)
        config.ping_timeout = _optional_float(data, "ping_timeout", config.ping_timeout)

    override = server_url or os.getenv(SERVER_ENV)
    if override:
        config.server_url = override

    if not is_http_url(config.server_url):
        raise ConfigError(f"server_url must be an http(s) URL, got {config.server_url!r}")
    return config
