"""Script-driven matching engine for reverse-engineering binary protocols.

Matcher scripts are Lua files.  Each one inspects decoded packets and records
its guesses about packet names and fields in a shared cache::

    PACKET_NAME = "Login"

    function compare(id, header, data)
      local user = data:string(1)
      if user ~= nil then
        identify(PACKET_NAME, id, { field_name = "user", field_type = "string", field_id = 1 })
      end
    end
"""

from __future__ import annotations

from .cache import Cache, CacheSnapshot, MessageField
from .comparer import Comparer
from .config import Config, load_environment, parse_environment
from .engine import Engine
from .exceptions import (
    BiscuitError,
    ComparerError,
    ConfigError,
    DecodeError,
    EnvironmentFileError,
    SandboxError,
    ScriptDirectoryError,
    ScriptLoadError,
    ThreadAffinityError,
)
from .matcher import DispatchResult, LoadReport, Matcher
from .message import SerializedMessage, Value, ValueKind

__version__ = "0.1.0"

__all__ = [
    "BiscuitError",
    "Cache",
    "CacheSnapshot",
    "Comparer",
    "ComparerError",
    "Config",
    "ConfigError",
    "DecodeError",
    "DispatchResult",
    "Engine",
    "EnvironmentFileError",
    "LoadReport",
    "Matcher",
    "MessageField",
    "SandboxError",
    "ScriptDirectoryError",
    "ScriptLoadError",
    "SerializedMessage",
    "ThreadAffinityError",
    "Value",
    "ValueKind",
    "load_environment",
    "parse_environment",
]
