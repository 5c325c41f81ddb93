"""Loads matcher scripts and dispatches decoded packets to them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from . import wire
from .cache import Cache
from .comparer import Comparer
from .exceptions import ComparerError, DecodeError, ScriptDirectoryError, ScriptLoadError
from .message import SerializedMessage
from .wire import DecodedMessage

LOG = logging.getLogger(__name__)

SCRIPT_EXTENSION = ".lua"

Decoder = Callable[[bytes], DecodedMessage]

__all__ = ["Decoder", "DispatchResult", "LoadReport", "Matcher", "SCRIPT_EXTENSION"]


@dataclass
class LoadReport:
    """Outcome of one :meth:`Matcher.initialize` pass."""

    loaded: List[str] = field(default_factory=list)
    rejected: List[Path] = field(default_factory=list)
    failed: Dict[Path, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "loaded": list(self.loaded),
            "rejected": [str(path) for path in self.rejected],
            "failed": {str(path): reason for path, reason in self.failed.items()},
        }


@dataclass
class DispatchResult:
    """Which comparers ran for one packet."""

    packet_id: int
    dispatched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class Matcher:
    """Owns the shared :class:`Cache` and the ordered comparer roster.

    The roster is fixed once :meth:`initialize` returns.  Calling
    :meth:`initialize` again discards the roster and the cache together.
    """

    def __init__(self, decoder: Optional[Decoder] = None) -> None:
        self.decoder: Decoder = decoder or wire.decode
        self.cache = Cache()
        self._comparers: Tuple[Comparer, ...] = ()

    @property
    def comparers(self) -> Tuple[Comparer, ...]:
        return self._comparers

    def initialize(self, path: Path, environment: Optional[Mapping[str, str]] = None) -> LoadReport:
        """Load every ``*.lua`` script found directly inside ``path``.

        Entries are visited in file name order so the roster order is stable
        across platforms.
        """

        path = Path(path)
        if not path.is_dir():
            raise ScriptDirectoryError(f"script folder {path} does not exist")
        try:
            entries = sorted(path.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            raise ScriptDirectoryError(f"failed to read script folder {path}: {exc}") from exc

        cache = Cache()
        environment = dict(environment or {})
        comparers: List[Comparer] = []
        report = LoadReport()

        for entry in entries:
            if entry.suffix != SCRIPT_EXTENSION:
                continue
            try:
                if not entry.is_file():
                    continue
            except OSError as exc:
                LOG.warning("Failed to read file %s: %s", entry, exc)
                report.failed[entry] = str(exc)
                continue

            try:
                comparer = Comparer.load(entry, cache, script_dir=path, environment=environment)
            except ScriptLoadError as exc:
                LOG.warning("Invalid script (maybe syntax error?): %s", exc)
                report.failed[entry] = str(exc)
                continue

            if comparer is None:
                report.rejected.append(entry)
                continue
            comparers.append(comparer)
            report.loaded.append(comparer.name)

        self.cache = cache
        self._comparers = tuple(comparers)
        LOG.info(
            "loaded %d comparer(s) from %s (%d rejected, %d failed)",
            len(comparers),
            path,
            len(report.rejected),
            len(report.failed),
        )
        return report

    def _decode(self, blob: bytes, what: str) -> SerializedMessage:
        try:
            tree = self.decoder(blob)
        except DecodeError as exc:
            raise DecodeError(f"failed to decode {what}: {exc}") from exc
        return SerializedMessage.from_decoded(tree)

    def compare(self, packet_id: int, header: bytes, data: bytes) -> DispatchResult:
        """Decode ``header``/``data`` and hand them to every eligible comparer.

        A decode failure aborts the call before any comparer runs.  A
        comparer is skipped when the cache already binds its name to a
        different packet id.  Comparer failures are logged and never stop
        the remaining comparers.
        """

        decoded_data = self._decode(data, "packet")
        decoded_header = self._decode(header, "header")

        result = DispatchResult(packet_id)
        for comparer in self._comparers:
            bound = self.cache.id_for(comparer.name)
            if bound is not None and bound != packet_id:
                result.skipped.append(comparer.name)
                continue
            result.dispatched.append(comparer.name)
            try:
                comparer.compare(packet_id, decoded_header, decoded_data)
            except ComparerError as exc:
                LOG.warning("Failed to compare packet: %s", exc)
                result.failed[comparer.name] = str(exc)
        return result
