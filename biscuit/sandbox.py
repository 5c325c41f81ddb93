"""Restricted Lua runtime used to host one matcher script."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from lupa import LuaRuntime

from .exceptions import SandboxError
from .host_api import HostApi
from .message import LUA_MESSAGE_CLASS, SerializedMessage, lua_string, message_to_lua, python_text

LOG = logging.getLogger(__name__)

__all__ = ["Sandbox"]

_SAFE_GLOBALS = (
    "assert",
    "error",
    "getmetatable",
    "ipairs",
    "next",
    "pairs",
    "pcall",
    "rawequal",
    "rawget",
    "rawlen",
    "rawset",
    "select",
    "setmetatable",
    "tonumber",
    "tostring",
    "type",
    "xpcall",
    "_VERSION",
)

_SAFE_MODULES: Dict[str, Iterable[str]] = {
    "string": (
        "byte",
        "char",
        "find",
        "format",
        "gmatch",
        "gsub",
        "len",
        "lower",
        "match",
        "pack",
        "packsize",
        "rep",
        "reverse",
        "sub",
        "unpack",
        "upper",
    ),
    "table": ("concat", "insert", "move", "pack", "remove", "sort", "unpack"),
    "math": (
        "abs",
        "ceil",
        "floor",
        "fmod",
        "huge",
        "max",
        "maxinteger",
        "min",
        "mininteger",
        "modf",
        "pi",
        "sqrt",
        "tointeger",
        "type",
        "ult",
    ),
    "utf8": ("char", "charpattern", "codepoint", "codes", "len", "offset"),
}

_BANNED = (
    "collectgarbage",
    "debug",
    "dofile",
    "io",
    "load",
    "loadfile",
    "loadstring",
    "os",
    "package",
    "python",
    "require",
)

_READONLY = r"""
return function(data, label)
  return setmetatable({}, {
    __index = data,
    __newindex = function()
      error(label .. " is read-only", 2)
    end,
    __pairs = function()
      return next, data, nil
    end,
    __len = function()
      return #data
    end,
    __metatable = false,
  })
end
"""

# Copies stay inside Lua: some library values (utf8.charpattern) are not text.
_BUILD_ENVIRONMENT = r"""
return function(globals, modules, banned)
  local env = {}
  for _, name in ipairs(globals) do
    env[name] = _G[name]
  end
  for name, allowed in pairs(modules) do
    local source = _G[name]
    if type(source) == "table" then
      local copy = {}
      for _, attr in ipairs(allowed) do
        copy[attr] = source[attr]
      end
      env[name] = copy
    end
  end
  for _, name in ipairs(banned) do
    if env[name] ~= nil then
      error(name .. " must not be exposed to scripts")
    end
  end
  env._G = env
  return env
end
"""


def _deny_attribute(obj: Any, attr_name: Any, is_setting: bool) -> Any:
    raise AttributeError(f"access to attribute {attr_name!r} is not permitted")


class Sandbox:
    """One Lua runtime with a whitelisted global environment.

    Scripts never see the runtime's real globals: they are compiled with
    ``load(source, name, "t", env)`` against :attr:`env`, which holds a copy
    of the safe standard library subset plus the host API.  Python attribute
    access from Lua is rejected outright.

    The runtime does no implicit string conversion, so binary Lua strings
    reach host functions untouched as :class:`bytes`.
    """

    def __init__(
        self,
        host: HostApi,
        *,
        environment: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.host = host
        self.runtime = LuaRuntime(
            encoding=None,
            unpack_returned_tuples=True,
            register_eval=False,
            register_builtins=False,
            attribute_filter=_deny_attribute,
        )
        base_globals = self.runtime.globals()
        self._load = base_globals[b"load"]
        self._tostring = base_globals[b"tostring"]
        self._type = base_globals[b"type"]
        self.message_class = self.runtime.execute(LUA_MESSAGE_CLASS)
        self._new_message = self.message_class[b"new"]
        self._readonly = self.runtime.execute(_READONLY)
        self.env = self._build_environment(environment or {})
        host.bind(self)

    def _names(self, names: Iterable[str]) -> Any:
        return self.runtime.table_from([lua_string(name) for name in names])

    def _build_environment(self, environment: Mapping[str, str]) -> Any:
        runtime = self.runtime
        modules = runtime.table_from(
            {lua_string(name): self._names(allowed) for name, allowed in _SAFE_MODULES.items()}
        )
        env = runtime.execute(_BUILD_ENVIRONMENT)(
            self._names(_SAFE_GLOBALS), modules, self._names(_BANNED)
        )

        host = self.host
        env[b"print"] = host.info
        env[b"info"] = host.info
        env[b"warn"] = host.warn
        env[b"log"] = runtime.table_from(
            {b"info": host.info, b"warn": host.warn, b"error": host.error}
        )
        env[b"base64Decode"] = host.base64_decode
        env[b"rsaDecrypt"] = host.rsa_decrypt
        env[b"identify"] = host.identify
        env[b"isKnown"] = host.is_known
        env[b"require"] = host.require
        env[b"module"] = runtime.table()
        variables = runtime.table_from(
            {lua_string(key): lua_string(value) for key, value in environment.items()}
        )
        env[b"env"] = self._readonly(variables, b"env")
        env[b"SerializedMessage"] = self._readonly(self.message_class, b"SerializedMessage")
        return env

    def lua_type(self, value: Any) -> str:
        return python_text(self._type(value))

    def tostring(self, value: Any) -> str:
        return python_text(self._tostring(value), errors="replace")

    def get(self, name: str) -> Any:
        return self.env[lua_string(name)]

    def is_function(self, value: Any) -> bool:
        return value is not None and self.lua_type(value) == "function"

    def compile(self, source: Union[str, bytes], chunk_name: str) -> Any:
        """Compile ``source`` against the sandbox environment."""

        result = self._load(lua_string(source), lua_string(f"@{chunk_name}"), b"t", self.env)
        compile_error: Optional[Any] = None
        if isinstance(result, tuple):
            chunk = result[0] if result else None
            if len(result) > 1:
                compile_error = python_text(result[1], errors="replace")
        else:
            chunk = result
        if chunk is None:
            raise SandboxError(f"failed to compile {chunk_name}: {compile_error or 'unknown error'}")
        return chunk

    def execute_file(self, path: Path) -> Any:
        try:
            source = path.read_bytes()
        except OSError as exc:
            raise SandboxError(f"failed to read {path.name}: {exc}") from exc
        chunk = self.compile(source, path.name)
        return chunk()

    def run_module(self, path: Path) -> Any:
        """Evaluate ``path`` with a fresh ``module.exports`` slot.

        The chunk's return value wins when it is not ``nil``; otherwise the
        value assigned to ``module.exports`` is returned.
        """

        module = self.env[b"module"]
        previous = module[b"exports"]
        module[b"exports"] = None
        try:
            LOG.debug("requiring module %s", path)
            result = self.execute_file(path)
            exports = module[b"exports"]
        finally:
            module[b"exports"] = previous
        if result is not None:
            return result
        return exports

    def to_lua_message(self, message: SerializedMessage) -> Any:
        return message_to_lua(self.runtime, message, self._new_message)
