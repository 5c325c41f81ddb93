"""Engine configuration and environment file loading."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping

from .exceptions import ConfigError, EnvironmentFileError

LOG = logging.getLogger(__name__)

__all__ = ["Config", "load_environment", "parse_environment"]

_ENV_LINE = re.compile(r"^(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_.]*)\s*=\s*(?P<value>.*)$")


@dataclass
class Config:
    """Configuration used for the matcher.

    ``script_path`` names the directory holding the matcher scripts and must
    exist when the engine is initialised.  ``environment_file`` is optional;
    a missing file simply yields an empty ``env`` table for the scripts.
    """

    script_path: str = "scripts"
    environment_file: str = ".env"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Config":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")
        values: Dict[str, str] = {}
        for key, value in data.items():
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{key} must be a non-empty string")
            values[key] = value
        return cls(**values)

    @classmethod
    def from_json(cls, path: str | Path) -> "Config":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except OSError as exc:
            raise ConfigError(f"failed to read configuration {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid configuration {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"configuration {path} must contain a JSON object")
        return cls.from_mapping(data)

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_environment(text: str) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines.

    Blank lines and ``#`` comments are ignored and an ``export`` prefix is
    accepted.  Values are kept verbatim apart from surrounding whitespace and
    one pair of matching quotes.
    """

    variables: Dict[str, str] = {}
    for number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _ENV_LINE.match(line)
        if match is None:
            raise EnvironmentFileError(f"expected KEY=VALUE, got {raw_line!r}", line=number)
        variables[match.group("key")] = _unquote(match.group("value").strip())
    return variables


def load_environment(path: str | Path | None) -> Dict[str, str]:
    """Load the environment snapshot handed to every script.

    A missing file yields an empty snapshot; a malformed one is reported as a
    warning and also yields an empty snapshot.
    """

    if not path:
        return {}
    path = Path(path)
    if not path.is_file():
        LOG.debug("environment file %s not found", path)
        return {}
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        LOG.warning("failed to read environment file %s: %s", path, exc)
        return {}
    try:
        return parse_environment(content)
    except EnvironmentFileError as exc:
        LOG.warning("failed to parse environment file: %s", exc)
        return {}
