"""Process-level handle tying configuration, matcher and feed together."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from .affinity import ThreadAffinity
from .cache import CacheSnapshot
from .config import Config, load_environment
from .matcher import Decoder, DispatchResult, LoadReport, Matcher

LOG = logging.getLogger(__name__)

__all__ = ["Engine"]

_U16_MAX = 0xFFFF


class Engine:
    """Explicit replacement for a global matcher singleton.

    Construct one engine at process start and pass it to whatever feeds
    packets.  :meth:`initialize` and :meth:`input` must run on the designated
    thread (the main thread unless another one is given) because the Lua
    runtimes they create and drive are bound to it.

    Example::

        engine = Engine()
        engine.initialize(Config(script_path="scripts"))
        engine.input(42, header_bytes, body_bytes)
        snapshot = engine.cache()
    """

    def __init__(
        self,
        *,
        thread: Optional[threading.Thread] = None,
        decoder: Optional[Decoder] = None,
    ) -> None:
        self._affinity = ThreadAffinity(thread or threading.main_thread())
        self._decoder = decoder
        self._lock = threading.Lock()
        self._matcher: Optional[Matcher] = Matcher(decoder)
        self.config = Config()

    def _require_matcher(self) -> Matcher:
        if self._matcher is None:
            raise RuntimeError("engine is closed")
        return self._matcher

    def initialize(self, config: Config) -> LoadReport:
        """Load the scripts named by ``config`` into a fresh matcher.

        The previous roster and cache are discarded only once the new
        directory has been loaded successfully.
        """

        self._affinity.check("initialize")
        environment = load_environment(config.environment_file)

        with self._lock:
            self._require_matcher()
            matcher = Matcher(self._decoder)
            report = matcher.initialize(Path(config.script_path), environment)
            self._matcher = matcher
            self.config = config
        return report

    def input(self, packet_id: int, header: bytes, data: bytes) -> DispatchResult:
        """Process one packet.

        This should **only** be called on the designated thread.
        """

        self._affinity.check("input")
        if isinstance(packet_id, bool) or not isinstance(packet_id, int):
            raise TypeError("packet id must be an integer")
        if not 0 <= packet_id <= _U16_MAX:
            raise ValueError(f"packet id {packet_id} outside 0..{_U16_MAX}")
        with self._lock:
            return self._require_matcher().compare(packet_id, header, data)

    def cache(self) -> CacheSnapshot:
        """Return an immutable copy of the current cache."""

        with self._lock:
            return self._require_matcher().cache.snapshot()

    @property
    def comparer_names(self) -> tuple:
        with self._lock:
            return tuple(comparer.name for comparer in self._require_matcher().comparers)

    def close(self) -> None:
        with self._lock:
            self._matcher = None
        LOG.debug("engine closed")

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
