"""csafe Configuration — project-level .csaferc.yml support.

Loads configuration from .csaferc.yml (or .csaferc.yaml, .csaferc.json),
searching upward from the directory of the file being compiled. Command
line flags override whatever the file says.

Example .csaferc.yml:
    target: cpp            # "cpp" or "llvm"
    werror: false          # treat warnings as errors
    format: pretty         # "pretty" or "json"
    prelude: inline        # "inline" or "include" (csafe_runtime.hpp)
    jobs: 4                # parallel units for `csafe build` (0 = auto)
    out_dir: build/
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

TARGETS = ("cpp", "llvm")
FORMATS = ("pretty", "json")
PRELUDES = ("inline", "include")


class ConfigError(ValueError):
    """A config file exists but cannot be used."""


@dataclass
class CsafeConfig:
    """Project-level csafe configuration."""
    target: str = "cpp"
    werror: bool = False
    format: str = "pretty"
    prelude: str = "inline"
    jobs: int = 0  # 0 = auto (cpu_count)
    out_dir: str = ""
    # File the values came from, if any
    source: str = ""

    def merged(self, **overrides: Any) -> CsafeConfig:
        """A copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CsafeConfig(**values)


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".csaferc.yml",
    ".csaferc.yaml",
    ".csaferc.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> CsafeConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, returns defaults. A file that exists but
    does not parse, or holds invalid values, raises ``ConfigError``.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return CsafeConfig()

    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    try:
        if path.endswith(".json"):
            data = json.loads(content) if content.strip() else {}
        else:
            data = yaml.safe_load(content) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    config = _dict_to_config(data, path)
    logger.debug("loaded config from %s", path)
    return config


def _choice(data: dict[str, Any], key: str, allowed: tuple[str, ...], path: str) -> str:
    value = str(data[key])
    if value not in allowed:
        raise ConfigError(f"{path}: '{key}' must be one of {', '.join(allowed)}, got '{value}'")
    return value


def _dict_to_config(data: dict[str, Any], path: str) -> CsafeConfig:
    """Convert a parsed dict to CsafeConfig."""
    config = CsafeConfig(source=path)

    unknown = sorted(set(data) - {f.name for f in fields(CsafeConfig)} - {"source"})
    for key in unknown:
        logger.warning("%s: ignoring unknown config key '%s'", path, key)

    if "target" in data:
        config.target = _choice(data, "target", TARGETS, path)
    if "werror" in data:
        if not isinstance(data["werror"], bool):
            raise ConfigError(f"{path}: 'werror' must be true or false, got {data['werror']!r}")
        config.werror = data["werror"]
    if "format" in data:
        config.format = _choice(data, "format", FORMATS, path)
    if "prelude" in data:
        config.prelude = _choice(data, "prelude", PRELUDES, path)
    if "jobs" in data:
        if isinstance(data["jobs"], bool) or not isinstance(data["jobs"], int):
            raise ConfigError(f"{path}: 'jobs' must be an integer")
        config.jobs = data["jobs"]
        if config.jobs < 0:
            raise ConfigError(f"{path}: 'jobs' must not be negative")
    if "out_dir" in data and data["out_dir"] is not None:
        config.out_dir = str(data["out_dir"])

    return config
