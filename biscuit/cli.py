"""Command line entry point: replay captured packets through the matcher."""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config
from .engine import Engine
from .exceptions import BiscuitError, ConfigError, DecodeError
from .io_utils import iter_json_lines, write_json
from .logging_config import configure_logging

LOG = logging.getLogger(__name__)


def _build_config(args: argparse.Namespace) -> Config:
    config = Config.from_json(args.config) if args.config else Config()
    if args.scripts:
        config.script_path = args.scripts
    if args.env:
        config.environment_file = args.env
    return config


def _blob(record: Dict[str, Any], key: str, number: int) -> bytes:
    value = record.get(key, "")
    if not isinstance(value, str):
        raise ValueError(f"line {number}: {key} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"line {number}: {key} is not valid base64: {exc}") from exc


def _replay(engine: Engine, capture: Path) -> Dict[str, int]:
    stats = {"packets": 0, "decode_errors": 0, "comparer_errors": 0, "skipped": 0}
    for number, record in iter_json_lines(capture):
        packet_id = record.get("id")
        if isinstance(packet_id, bool) or not isinstance(packet_id, int):
            raise ValueError(f"line {number}: id must be an integer")
        header = _blob(record, "header", number)
        data = _blob(record, "data", number)
        stats["packets"] += 1
        try:
            result = engine.input(packet_id, header, data)
        except DecodeError as exc:
            LOG.warning("line %d: %s", number, exc)
            stats["decode_errors"] += 1
            continue
        stats["comparer_errors"] += len(result.failed)
        stats["skipped"] += len(result.skipped)
    return stats


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--scripts", default=None, help="Directory containing matcher scripts")
    parser.add_argument("--env", default=None, help="Environment file exposed to scripts")
    parser.add_argument("--config", default=None, help="JSON configuration file")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", default=None, help="Also write log records to this file")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Protocol matcher CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Feed a JSON-lines capture through the matcher scripts")
    replay.add_argument("capture", help="Capture file: one {\"id\", \"header\", \"data\"} object per line")
    replay.add_argument("--out", default=None, help="Write the resulting cache as JSON to this path")
    _add_common(replay)

    check = sub.add_parser("check", help="Load the matcher scripts and report the outcome")
    _add_common(check)

    args = parser.parse_args(argv)
    configure_logging(
        args.log_level.upper(),
        log_file=Path(args.log_file) if args.log_file else None,
    )

    try:
        config = _build_config(args)
    except ConfigError as exc:
        parser.error(str(exc))
        return 2

    engine = Engine()
    try:
        report = engine.initialize(config)
    except BiscuitError as exc:
        LOG.error("initialisation failed: %s", exc)
        return 1

    if args.command == "check":
        print(json.dumps(report.as_dict(), indent=2))
        return 0 if not report.failed else 1

    if args.command == "replay":
        try:
            stats = _replay(engine, Path(args.capture))
        except (OSError, ValueError) as exc:
            LOG.error("failed to replay capture: %s", exc)
            return 1
        snapshot = engine.cache().as_dict()
        LOG.info(
            "replayed %d packet(s): %d decode error(s), %d comparer error(s)",
            stats["packets"],
            stats["decode_errors"],
            stats["comparer_errors"],
        )
        if args.out:
            write_json(args.out, snapshot)
        else:
            print(json.dumps({"stats": stats, "cache": snapshot}, indent=2))
        return 0

    parser.error("Unhandled command")
    return 2


if __name__ == "__main__":  # pragma: no cover - CLI wrapper
    sys.exit(main())
