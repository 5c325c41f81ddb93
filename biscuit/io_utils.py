"""Filesystem helpers for capture files and cache exports."""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Dict, Iterator, Tuple

__all__ = [
    "iter_json_lines",
    "write_json",
]


def write_json(
    path: str | os.PathLike[str],
    obj: Any,
    *,
    encoding: str = "utf-8",
    sort_keys: bool = False,
) -> None:
    """Serialise ``obj`` as pretty JSON at ``path``.

    The document is written to a temporary sibling first and moved into place,
    so readers never observe a half-written export.
    """

    target = os.fspath(path)
    directory = os.path.dirname(target) or "."
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".partial", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            json.dump(obj, handle, ensure_ascii=False, indent=2, sort_keys=sort_keys)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise


def iter_json_lines(
    path: str | os.PathLike[str],
    *,
    encoding: str = "utf-8",
) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """Yield ``(line_number, object)`` for every non-blank line of ``path``.

    Lines that are not JSON objects raise :class:`ValueError` naming the line.
    """

    with open(os.fspath(path), "r", encoding=encoding) as handle:
        for number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"line {number}: invalid JSON: {exc}") from exc
            if not isinstance(record, dict):
                raise ValueError(f"line {number}: expected a JSON object")
            yield number, record
