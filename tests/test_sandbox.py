from __future__ import annotations

import base64
import logging
import textwrap
from pathlib import Path

import pytest

from biscuit.cache import Cache
from biscuit.exceptions import SandboxError
from biscuit.host_api import HostApi
from biscuit.sandbox import Sandbox


def _sandbox(directory: Path, environment=None) -> Sandbox:
    host = HostApi(Cache(), directory, logger=logging.getLogger("biscuit.scripts.sandbox"))
    return Sandbox(host, environment=environment)


def _run(sandbox: Sandbox, source: str):
    return sandbox.compile(textwrap.dedent(source), "snippet.lua")()


def test_dangerous_globals_are_removed(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    names = ("os", "io", "package", "debug", "dofile", "loadfile", "load", "loadstring", "collectgarbage", "python")
    for name in names:
        assert _run(sandbox, f"return {name}") is None, name


def test_safe_library_subset_is_available(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    result = _run(
        sandbox,
        """
        local parts = {}
        for word in string.gmatch("a b c", "%a") do table.insert(parts, word) end
        return table.concat(parts, "-"), math.floor(2.7), string.format("%02x", 255), _G == _ENV
        """,
    )
    assert result == (b"a-b-c", 2, b"ff", True)


def test_string_library_copy_is_restricted(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, "return string.dump") is None


def test_utf8_library_is_copied_inside_lua(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    length, pattern = _run(sandbox, 'return utf8.len("caf\\u{e9}"), utf8.charpattern')
    assert length == 4
    assert isinstance(pattern, bytes)
    assert b"\x80-\xbf" in pattern


def test_python_attributes_are_not_reachable(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    ok, _ = _run(sandbox, "return pcall(function() return info.__globals__ end)")
    assert ok is False


def test_host_errors_are_catchable(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    result = _run(
        sandbox,
        """
        local ok_b64 = pcall(base64Decode, "not base64!")
        local ok_rsa = pcall(rsaDecrypt, "nope", "AAAA")
        local ok_known = pcall(isKnown, {})
        local ok_identify = pcall(identify, "A")
        return ok_b64, ok_rsa, ok_known, ok_identify
        """,
    )
    assert result == (False, False, False, False)


def test_base64_decode_from_lua(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    encoded = base64.b64encode(b"hello").decode("ascii")
    assert _run(sandbox, f'return base64Decode("{encoded}")') == b"hello"


def test_binary_strings_reach_log_functions(tmp_path: Path, caplog) -> None:
    sandbox = _sandbox(tmp_path)
    with caplog.at_level(logging.INFO, logger="biscuit.scripts.sandbox"):
        _run(sandbox, 'info("\\xff\\x00\\x81") warn(base64Decode("/wA="))')
    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["\ufffd\x00\ufffd", "\ufffd\x00"]


def test_non_utf8_identify_name_is_catchable(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    ok, _ = _run(
        sandbox,
        'return pcall(identify, "\\xff", 1, { field_name = "a", field_type = "b", field_id = 1 })',
    )
    assert ok is False
    assert len(sandbox.host.cache) == 0


def test_identify_and_is_known_from_lua(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    result = _run(
        sandbox,
        """
        local before = isKnown(42)
        identify("Login", 42, { field_name = "user", field_type = "string", field_id = 1 })
        return before, isKnown(42), isKnown("Login"), isKnown("Other")
        """,
    )
    assert result == (False, True, True, False)
    assert sandbox.host.cache.snapshot().id_map == {42: "Login"}


def test_env_is_read_only(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path, environment={"API_KEY": "abc"})
    assert _run(sandbox, "return env.API_KEY, env.MISSING") == (b"abc", None)
    ok, message = _run(sandbox, 'return pcall(function() env.API_KEY = "x" end)')
    assert ok is False
    assert b"read-only" in message
    assert _run(sandbox, "local n = 0 for k, v in pairs(env) do n = n + 1 end return n") == 1


def test_print_and_log_route_to_logger(tmp_path: Path, caplog) -> None:
    sandbox = _sandbox(tmp_path)
    with caplog.at_level(logging.INFO, logger="biscuit.scripts.sandbox"):
        _run(sandbox, 'print("a", 1) log.warn(true) log.error({}) info(1.5)')
    messages = [record.getMessage() for record in caplog.records]
    assert messages[0] == "a 1"
    assert messages[1] == "true"
    assert messages[2].startswith("table: ")
    assert messages[3] == "1.5"
    assert [record.levelname for record in caplog.records] == ["INFO", "WARNING", "ERROR", "INFO"]


def test_require_returns_module_exports(tmp_path: Path) -> None:
    (tmp_path / "util.lua").write_text("module.exports = { answer = 42 }", encoding="utf-8")
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, 'return require("util.lua").answer') == 42
    assert _run(sandbox, 'return require("util").answer') == 42


def test_require_prefers_returned_value(tmp_path: Path) -> None:
    (tmp_path / "mod.lua").write_text("module.exports = 1\nreturn 2", encoding="utf-8")
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, 'return require("mod")') == 2


def test_require_re_executes_every_time(tmp_path: Path) -> None:
    (tmp_path / "counter.lua").write_text(
        "COUNT = (COUNT or 0) + 1\nmodule.exports = COUNT", encoding="utf-8"
    )
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, 'require("counter") require("counter") return require("counter"), COUNT') == (3, 3)


def test_require_resolves_relative_to_the_requiring_module(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "outer.lua").write_text('return require("inner") + 1', encoding="utf-8")
    (tmp_path / "lib" / "inner.lua").write_text("return 41", encoding="utf-8")
    (tmp_path / "inner.lua").write_text("return 0", encoding="utf-8")
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, 'return require("lib/outer"), require("inner")') == (42, 0)


def test_require_shares_the_calling_environment(tmp_path: Path) -> None:
    (tmp_path / "shared.lua").write_text("function helper() return SEED * 2 end", encoding="utf-8")
    sandbox = _sandbox(tmp_path)
    assert _run(sandbox, 'SEED = 21 require("shared") return helper()') == 42


def test_require_failures_are_catchable(tmp_path: Path) -> None:
    (tmp_path / "broken.lua").write_text("this is not lua", encoding="utf-8")
    sandbox = _sandbox(tmp_path)
    result = _run(
        sandbox,
        """
        local ok_missing = pcall(require, "missing")
        local ok_broken = pcall(require, "broken")
        local ok_escape = pcall(require, "../outside")
        return ok_missing, ok_broken, ok_escape
        """,
    )
    assert result == (False, False, False)


def test_compile_error_raises_sandbox_error(tmp_path: Path) -> None:
    sandbox = _sandbox(tmp_path)
    with pytest.raises(SandboxError, match="failed to compile"):
        sandbox.compile("function (", "bad.lua")


def test_sandboxes_are_isolated(tmp_path: Path) -> None:
    first = _sandbox(tmp_path)
    second = _sandbox(tmp_path)
    _run(first, "VALUE = 1")
    assert _run(second, "return VALUE") is None
