"""Cumulative knowledge base of identified packets."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

__all__ = ["Cache", "CacheSnapshot", "MessageField"]

_U16_MAX = 0xFFFF


@dataclass(frozen=True)
class MessageField:
    """One guessed field of a packet.

    A repeated ``field_name`` within a packet is treated as a ``oneof`` by
    consumers of the exported cache.
    """

    field_name: str
    field_type: str
    field_id: int

    def __post_init__(self) -> None:
        if not 0 <= self.field_id <= _U16_MAX:
            raise ValueError(f"field_id {self.field_id} outside 0..{_U16_MAX}")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "field_type": self.field_type,
            "field_id": self.field_id,
        }


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable copy of the cache contents."""

    known_names: Tuple[str, ...] = ()
    known_ids: Tuple[int, ...] = ()
    id_map: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    name_map: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    messages: Mapping[str, Tuple[MessageField, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "known_names": list(self.known_names),
            "known_ids": list(self.known_ids),
            "id_map": {str(key): value for key, value in self.id_map.items()},
            "name_map": dict(self.name_map),
            "messages": {
                name: [entry.as_dict() for entry in fields]
                for name, fields in self.messages.items()
            },
        }


class Cache:
    """Append-only packet id/name/field store shared by every comparer.

    ``id_map`` and ``name_map`` are written together, only the first time a
    packet id is seen.  Field guesses are appended under the literal name
    passed to :meth:`update` on every call, even when the id was already
    bound to a different name.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._known_names: List[str] = []
        self._known_ids: List[int] = []
        self._id_map: Dict[int, str] = {}
        self._name_map: Dict[str, int] = {}
        self._messages: Dict[str, List[MessageField]] = {}

    def id_known(self, packet_id: int) -> bool:
        with self._lock:
            return packet_id in self._id_map

    def name_known(self, name: str) -> bool:
        with self._lock:
            return name in self._known_names

    def id_for(self, name: str) -> Optional[int]:
        """Return the packet id bound to ``name``, if any."""

        with self._lock:
            return self._name_map.get(name)

    def update(self, name: str, packet_id: int, message_field: MessageField) -> None:
        with self._lock:
            if packet_id not in self._id_map:
                self._known_names.append(name)
                self._known_ids.append(packet_id)
                self._id_map[packet_id] = name
                self._name_map.setdefault(name, packet_id)
            self._messages.setdefault(name, []).append(message_field)

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(
                known_names=tuple(self._known_names),
                known_ids=tuple(self._known_ids),
                id_map=MappingProxyType(dict(self._id_map)),
                name_map=MappingProxyType(dict(self._name_map)),
                messages=MappingProxyType(
                    {name: tuple(fields) for name, fields in self._messages.items()}
                ),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._known_ids)
