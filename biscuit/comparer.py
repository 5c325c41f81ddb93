"""A single matcher script and its thread-bound sandbox."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from .affinity import ThreadAffinity
from .cache import Cache
from .exceptions import ComparerError, ScriptLoadError
from .host_api import HostApi
from .message import SerializedMessage, python_text
from .sandbox import Sandbox

LOG = logging.getLogger(__name__)
SCRIPT_LOGGER = "biscuit.scripts"

__all__ = ["Comparer", "SCRIPT_LOGGER"]


class Comparer:
    """One loaded matcher script.

    The Lua runtime behind a comparer is not reentrant and belongs to the
    thread that created it; every public method asserts that ownership
    before touching the runtime.
    """

    def __init__(self, name: str, path: Path, sandbox: Sandbox, affinity: ThreadAffinity) -> None:
        self._name = name
        self._path = path
        self._sandbox = sandbox
        self._affinity = affinity

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> Path:
        return self._path

    def __repr__(self) -> str:
        return f"Comparer(name={self._name!r}, path={str(self._path)!r})"

    @classmethod
    def load(
        cls,
        path: Path,
        cache: Cache,
        *,
        script_dir: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> Optional["Comparer"]:
        """Load the script at ``path``.

        Returns ``None`` when the script defines no ``compare`` function and
        raises :class:`ScriptLoadError` when it cannot be evaluated, lacks a
        ``PACKET_NAME`` string or its ``init`` function fails.
        """

        path = Path(path)
        affinity = ThreadAffinity()
        logger = logging.getLogger(f"{SCRIPT_LOGGER}.{path.stem}")
        host = HostApi(cache, script_dir or path.parent, logger=logger)
        try:
            sandbox = Sandbox(host, environment=environment)
        except Exception as exc:
            raise ScriptLoadError(f"failed to create sandbox for {path.name}: {exc}") from exc

        try:
            sandbox.execute_file(path)
        except Exception as exc:
            raise ScriptLoadError(f"failed to evaluate script {path.name}: {exc}") from exc

        if not sandbox.is_function(sandbox.get("compare")):
            LOG.debug("%s defines no compare function", path.name)
            return None

        try:
            name = python_text(sandbox.get("PACKET_NAME"))
        except UnicodeDecodeError as exc:
            raise ScriptLoadError(f"PACKET_NAME of {path.name} is not valid UTF-8: {exc}") from exc
        if not name:
            raise ScriptLoadError(f"{path.name} defines compare but no PACKET_NAME string")

        initialize = sandbox.get("init")
        if sandbox.is_function(initialize):
            try:
                initialize()
            except Exception as exc:
                raise ScriptLoadError(f"init function of {path.name} failed: {exc}") from exc

        LOG.debug("loaded comparer %s from %s", name, path.name)
        return cls(name, path, sandbox, affinity)

    def compare(self, packet_id: int, header: SerializedMessage, data: SerializedMessage) -> None:
        """Run the script's ``compare(id, header, data)`` function."""

        self._affinity.check(f"comparer {self._name!r}")
        sandbox = self._sandbox
        try:
            lua_header = sandbox.to_lua_message(header)
            lua_data = sandbox.to_lua_message(data)
            compare = sandbox.get("compare")
            if not sandbox.is_function(compare):
                raise ComparerError(f"{self._name}: compare is no longer a function")
            result = compare(int(packet_id), lua_header, lua_data)
        except ComparerError:
            raise
        except Exception as exc:
            raise ComparerError(f"{self._name}: failed to run compare function: {exc}") from exc
        _check_returned_error(self._name, result)


def _check_returned_error(name: str, result: Any) -> None:
    # Lua convention: ``return nil, "message"`` reports a failure.
    if isinstance(result, tuple) and len(result) >= 2:
        status, message = result[0], result[1]
        if status in (None, False) and isinstance(message, (str, bytes)):
            message = python_text(message, errors="replace")
            raise ComparerError(f"{name}: compare returned an error: {message}")
