"""Custom exception hierarchy for the matching engine."""

from __future__ import annotations


class BiscuitError(Exception):
    """Base class for all matcher related errors."""


class ConfigError(BiscuitError):
    """Raised when a configuration file or mapping is invalid."""


class EnvironmentFileError(ConfigError):
    """Raised when an environment file contains a malformed line."""

    def __init__(self, message: str, *, line: int) -> None:
        super().__init__(f"line {line}: {message}")
        self.line = line


class ScriptDirectoryError(BiscuitError):
    """Raised when the script directory is missing or cannot be listed."""


class ScriptLoadError(BiscuitError):
    """Raised when a single matcher script fails to load."""


class DecodeError(BiscuitError):
    """Raised when a packet blob cannot be decoded."""


class ComparerError(BiscuitError):
    """Raised when a script's ``compare`` function fails."""


class SandboxError(BiscuitError, RuntimeError):
    """Raised by host functions; scripts can catch it with ``pcall``."""


class ThreadAffinityError(BiscuitError, RuntimeError):
    """Raised when thread-bound state is touched from a foreign thread."""


__all__ = [
    "BiscuitError",
    "ComparerError",
    "ConfigError",
    "DecodeError",
    "EnvironmentFileError",
    "SandboxError",
    "ScriptDirectoryError",
    "ScriptLoadError",
    "ThreadAffinityError",
]
