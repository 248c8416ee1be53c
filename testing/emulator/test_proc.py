"""测试外部命令执行与工具路径解析。"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from simcast.emulator import _proc
from simcast.emulator.tools import ToolPaths, find_executable
from simcast.infra.config import AndroidConfig, AppConfig, MirrorConfig
from simcast.infra.exceptions import CommandError


class TestRun:
    """测试子进程执行。"""

    @pytest.mark.asyncio
    async def test_stdout(self):
        out = await _proc.run(sys.executable, "-c", "print('hello')")
        assert out.strip() == "hello"

    @pytest.mark.asyncio
    async def test_bytes(self):
        out = await _proc.run_bytes(
            sys.executable, "-c", "import sys; sys.stdout.buffer.write(b'\\x89PNG')"
        )
        assert out == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        with pytest.raises(CommandError) as exc_info:
            await _proc.run(
                sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"
            )
        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "bad"

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path):
        with pytest.raises(CommandError):
            await _proc.run(tmp_path / "no-such-binary")

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(CommandError) as exc_info:
            await _proc.run(sys.executable, "-c", "import time; time.sleep(5)", timeout=0.2)
        assert "超时" in exc_info.value.stderr


def _make_exe(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestFindExecutable:
    """测试可执行文件查找。"""

    def test_candidate_first(self, tmp_path: Path):
        exe = _make_exe(tmp_path / "adb")
        assert find_executable("adb-not-on-path", [None, tmp_path / "missing", exe]) == str(exe)

    def test_non_executable_skipped(self, tmp_path: Path):
        plain = tmp_path / "adb"
        plain.write_text("", encoding="utf-8")
        assert find_executable("simcast-no-such-tool", [plain]) is None

    def test_path_fallback(self, tmp_path: Path, monkeypatch):
        _make_exe(tmp_path / "simcast-tool")
        monkeypatch.setenv("PATH", str(tmp_path) + os.pathsep + os.environ.get("PATH", ""))
        assert find_executable("simcast-tool") == str(tmp_path / "simcast-tool")

    def test_resolve_from_sdk(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("PATH", "")
        adb = _make_exe(tmp_path / "platform-tools" / "adb")
        emulator = _make_exe(tmp_path / "emulator" / "emulator")
        mirror = _make_exe(tmp_path / "bin" / "scrcpy")
        config = AppConfig(
            android=AndroidConfig(sdk_root=tmp_path),
            mirror=MirrorConfig(path=mirror),
        )
        paths = ToolPaths.resolve(config)
        assert paths.adb == str(adb)
        assert paths.emulator == str(emulator)
        assert paths.mirror == str(mirror)
        assert paths.xcrun is None
