"""
Run configuration.

``RunOptions`` is the immutable configuration handed to the engine once at
construction.  User overrides are read from ``~/.netgauge/config.json``.

Supported keys::

    ping_count = 15             # latency probes per run
    probe_timeout = 1.0         # seconds per probe
    inter_probe_delay = 0.1
    loaded_latency_count = 5
    sample_interval = 0.25      # throughput sampling interval (s)
    download_bytes = 25000000
    upload_bytes = 10000000
    transfer_timeout = 10.0
    phase_timeout = 20.0        # must fit a fully failing latency series
    metadata_timeout = 5.0
    run_deadline = 60.0
    retries = 1
    error_policy = "soft"       # or "strict"
    latency_transport = "tcp"   # tcp | http | ws | icmp
    endpoint = {"hostname": "speed.cloudflare.com", "port": 443, "scheme": "https"}
"""
from __future__ import annotations

import dataclasses
import enum
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from .constants import (
    DEFAULT_DOWNLOAD_BYTES,
    DEFAULT_INTER_PROBE_DELAY,
    DEFAULT_LOADED_LATENCY_COUNT,
    DEFAULT_LOADED_LATENCY_DELAY,
    DEFAULT_METADATA_TIMEOUT,
    DEFAULT_PHASE_TIMEOUT,
    DEFAULT_PING_COUNT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RUN_DEADLINE,
    DEFAULT_TRANSFER_TIMEOUT,
    DEFAULT_UPLOAD_BYTES,
    MAX_DURATION,
    MAX_PING_COUNT,
    MAX_RETRIES,
    MAX_TRANSFER_BYTES,
    MIN_PING_COUNT,
    MIN_TRANSFER_BYTES,
    SAMPLE_INTERVAL,
    WARMUP_PROBE_PAUSE,
)
from .models import Endpoint

LOGGER = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".netgauge")
_CONFIG_FILE = "config.json"

LATENCY_TRANSPORTS = ("tcp", "http", "ws", "icmp")


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


class ErrorPolicy(str, enum.Enum):
    """Which phase failures end a run."""

    SOFT = "soft"      # only connectivity failures in metadata / latency
    STRICT = "strict"  # any failed or timed-out phase


# ---------------------------------------------------------------------------
# RunOptions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunOptions:
    """Read-only configuration for one engine."""

    ping_count: int = DEFAULT_PING_COUNT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    inter_probe_delay: float = DEFAULT_INTER_PROBE_DELAY
    loaded_latency_count: int = DEFAULT_LOADED_LATENCY_COUNT
    loaded_latency_delay: float = DEFAULT_LOADED_LATENCY_DELAY
    sample_interval: float = SAMPLE_INTERVAL
    download_bytes: int = DEFAULT_DOWNLOAD_BYTES
    upload_bytes: int = DEFAULT_UPLOAD_BYTES
    transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT
    phase_timeout: float = DEFAULT_PHASE_TIMEOUT
    metadata_timeout: float = DEFAULT_METADATA_TIMEOUT
    run_deadline: float = DEFAULT_RUN_DEADLINE
    retries: int = DEFAULT_RETRIES
    error_policy: ErrorPolicy = ErrorPolicy.SOFT
    latency_transport: str = "tcp"
    endpoint: Endpoint = field(default_factory=Endpoint)

    def validate(self) -> RunOptions:
        """Raise ``ValueError`` if any field is out of range.  Returns self."""
        if not MIN_PING_COUNT <= self.ping_count <= MAX_PING_COUNT:
            raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
        if self.loaded_latency_count < 0:
            raise ValueError("Loaded latency count must be >= 0")
        if self.inter_probe_delay < 0 or self.loaded_latency_delay < 0:
            raise ValueError("Probe delays must be >= 0")
        if self.sample_interval <= 0:
            raise ValueError("Sample interval must be > 0")
        for name in ("download_bytes", "upload_bytes"):
            value = getattr(self, name)
            if not MIN_TRANSFER_BYTES <= value <= MAX_TRANSFER_BYTES:
                raise ValueError(
                    f"{name} must be between {MIN_TRANSFER_BYTES} and {MAX_TRANSFER_BYTES}"
                )
        if not 0 <= self.retries <= MAX_RETRIES:
            raise ValueError(f"Retries must be between 0 and {MAX_RETRIES}")
        if self.latency_transport not in LATENCY_TRANSPORTS:
            raise ValueError(f"Latency transport must be one of {', '.join(LATENCY_TRANSPORTS)}")
        if self.probe_timeout <= 0:
            raise ValueError("Probe timeout must be > 0")
        if not self.probe_timeout < self.phase_timeout < self.run_deadline:
            raise ValueError("Timeouts must nest: probe < phase < run deadline")
        if self.latency_budget() >= self.phase_timeout:
            raise ValueError(
                f"Phase timeout must exceed the {self.latency_budget():.1f} s a failing"
                " latency series can take"
            )
        if not 0 < self.transfer_timeout < self.phase_timeout:
            raise ValueError("Transfer timeout must be shorter than the phase timeout")
        if not 0 < self.metadata_timeout <= self.phase_timeout:
            raise ValueError("Metadata timeout must not exceed the phase timeout")
        if self.run_deadline > MAX_DURATION:
            raise ValueError(f"Run deadline must be at most {MAX_DURATION} s")
        return self

    def latency_budget(self) -> float:
        """Worst-case seconds for a latency series, warm-up probe included."""
        per_probe = self.probe_timeout + self.inter_probe_delay
        return self.ping_count * per_probe + self.probe_timeout + WARMUP_PROBE_PAUSE

    def replace(self, **changes: Any) -> RunOptions:
        return dataclasses.replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, Any]:
        out = dataclasses.asdict(self)
        out["error_policy"] = self.error_policy.value
        out["endpoint"] = self.endpoint.to_dict()
        return out


def options_from_config(config: Mapping[str, Any]) -> RunOptions:
    """Build validated ``RunOptions`` from a config mapping, ignoring unknown keys."""
    known = {f.name for f in dataclasses.fields(RunOptions)}
    kwargs: Dict[str, Any] = {}
    for key, value in config.items():
        if key not in known or value is None:
            continue
        if key == "error_policy":
            value = ErrorPolicy(value)
        elif key == "endpoint":
            value = value if isinstance(value, Endpoint) else Endpoint.from_dict(value)
        kwargs[key] = value
    return RunOptions(**kwargs).validate()


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = RunOptions().to_dict()


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError) as exc:
        LOGGER.warning("Ignoring unreadable config %s: %s", path, exc)

    return config


def save_config(config: Mapping[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(dict(config), fh, indent=2, ensure_ascii=False)

    return path


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
