"""Value model for decoded packets and its bridge into Lua.

A decoded packet becomes a :class:`SerializedMessage`: a mapping from field id
to a tagged :class:`Value`.  Scripts receive the same structure as a Lua
object exposing ``get``/``keys`` plus one typed getter and one ``all*``
enumerator per value kind, e.g. ``data:varint(1)`` or ``data:allString()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .wire import DecodedMessage, DecodedValue, Fixed32, Fixed64, Number, NumberKind, VarInt

__all__ = [
    "LUA_ENCODING",
    "LUA_MESSAGE_CLASS",
    "SerializedMessage",
    "Value",
    "ValueKind",
    "lua_string",
    "message_to_lua",
    "python_text",
]

# Runtimes are created with ``encoding=None``: Lua strings arrive as bytes and
# text has to be encoded explicitly on the way in.
LUA_ENCODING = "utf-8"


def lua_string(text: Union[str, bytes]) -> bytes:
    if isinstance(text, str):
        return text.encode(LUA_ENCODING)
    return bytes(text)


def python_text(value: Any, *, errors: str = "strict") -> Optional[str]:
    """Decode a Lua string into text.

    Returns ``None`` when ``value`` is not a string at all.  With the default
    ``errors="strict"`` invalid UTF-8 raises :class:`UnicodeDecodeError`.
    """

    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode(LUA_ENCODING, errors)
    return None


class ValueKind(str, Enum):
    VARINT = "varint"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BYTES = "bytes"
    MESSAGE = "message"


@dataclass(frozen=True)
class Value:
    """One field value tagged with its kind."""

    kind: ValueKind
    data: Any

    def number(self) -> Optional[Number]:
        """Narrowed representation of a varint, ``None`` for other kinds."""

        if self.kind is ValueKind.VARINT:
            return self.data.closest()
        return None

    @classmethod
    def from_decoded(cls, value: DecodedValue) -> "Value":
        if isinstance(value, VarInt):
            return cls(ValueKind.VARINT, value)
        if isinstance(value, Fixed32):
            return cls(ValueKind.FLOAT, value.value)
        if isinstance(value, Fixed64):
            return cls(ValueKind.DOUBLE, value.value)
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        if isinstance(value, (bytes, bytearray)):
            return cls(ValueKind.BYTES, bytes(value))
        if isinstance(value, Mapping):
            return cls(ValueKind.MESSAGE, SerializedMessage.from_decoded(value))
        raise TypeError(f"unsupported decoded value: {type(value).__name__}")


class SerializedMessage:
    """Field-id keyed view over a decoded message."""

    __slots__ = ("_fields",)

    def __init__(self, fields: Optional[Mapping[int, Value]] = None) -> None:
        self._fields: Dict[int, Value] = dict(fields or {})

    @classmethod
    def from_decoded(cls, tree: DecodedMessage) -> "SerializedMessage":
        return cls({int(key): Value.from_decoded(value) for key, value in tree.items()})

    def get(self, field_id: int, kind: Optional[ValueKind] = None) -> Optional[Value]:
        """Return the value at ``field_id``.

        ``None`` is returned when the field is missing or, if ``kind`` is
        given, holds a value of another kind.
        """

        value = self._fields.get(field_id)
        if value is None:
            return None
        if kind is not None and value.kind is not ValueKind(kind):
            return None
        return value

    def all(self, kind: ValueKind) -> List[Tuple[int, Value]]:
        kind = ValueKind(kind)
        return [(key, value) for key, value in self._fields.items() if value.kind is kind]

    def keys(self) -> List[int]:
        return list(self._fields)

    def items(self) -> Iterator[Tuple[int, Value]]:
        return iter(self._fields.items())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SerializedMessage):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"SerializedMessage({self._fields!r})"


# Lua side of the bridge.  ``_values`` holds the converted field values,
# ``_kinds`` the value kind per field id and ``_numbers`` the narrowed number
# kind of each varint field.
LUA_MESSAGE_CLASS = r"""
local SerializedMessage = {}
SerializedMessage.__index = SerializedMessage
SerializedMessage.__name = "SerializedMessage"

local ACCESSORS = {
  { "varint", "allVarInt" },
  { "float", "allFloat" },
  { "double", "allDouble" },
  { "string", "allString" },
  { "bytes", "allBytes" },
  { "message", "allMessage" },
}

function SerializedMessage.new(values, kinds, numbers)
  local object = { _values = values or {}, _kinds = kinds or {}, _numbers = numbers or {} }
  return setmetatable(object, SerializedMessage)
end

function SerializedMessage:get(key, kind)
  local value = self._values[key]
  if value == nil then
    return nil
  end
  if kind ~= nil and self._kinds[key] ~= kind then
    return nil
  end
  return value
end

function SerializedMessage:kind(key)
  return self._kinds[key]
end

function SerializedMessage:numberKind(key)
  return self._numbers[key]
end

function SerializedMessage:keys()
  local keys = {}
  for key in pairs(self._values) do
    keys[#keys + 1] = key
  end
  return keys
end

function SerializedMessage:all(kind)
  local fields = {}
  for key, value in pairs(self._values) do
    if self._kinds[key] == kind then
      fields[#fields + 1] = { key, value }
    end
  end
  return fields
end

for _, accessor in ipairs(ACCESSORS) do
  local kind, plural = accessor[1], accessor[2]
  SerializedMessage[kind] = function(self, key)
    return self:get(key, kind)
  end
  SerializedMessage[plural] = function(self)
    return self:all(kind)
  end
end

function SerializedMessage:__tostring()
  return "SerializedMessage(" .. #self:keys() .. " fields)"
end

return SerializedMessage
"""


def _lua_integer(number: Number) -> int:
    # Lua only has signed 64-bit integers; keep the bit pattern of uint64.
    if number.kind is NumberKind.UINT64:
        return number.value - (1 << 64)
    return number.value


def message_to_lua(runtime: Any, message: SerializedMessage, new_message: Callable[..., Any]) -> Any:
    """Convert ``message`` into a Lua ``SerializedMessage`` inside ``runtime``.

    ``new_message`` is the Lua constructor (``SerializedMessage.new``) of the
    target runtime.  Nested messages are converted recursively.
    """

    values: Dict[int, Any] = {}
    kinds: Dict[int, bytes] = {}
    numbers: Dict[int, bytes] = {}
    for field_id, value in message.items():
        kinds[field_id] = lua_string(value.kind.value)
        if value.kind is ValueKind.VARINT:
            number = value.data.closest()
            numbers[field_id] = lua_string(number.kind.value)
            values[field_id] = _lua_integer(number)
        elif value.kind is ValueKind.MESSAGE:
            values[field_id] = message_to_lua(runtime, value.data, new_message)
        elif value.kind is ValueKind.STRING:
            values[field_id] = lua_string(value.data)
        else:
            values[field_id] = value.data
    return new_message(
        runtime.table_from(values),
        runtime.table_from(kinds),
        runtime.table_from(numbers),
    )
