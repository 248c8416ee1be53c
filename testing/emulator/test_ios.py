"""测试 iOS 模拟器后端（mock simctl）。"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from simcast.emulator.ios import IosSimulatorBackend, parse_device_list, runtime_label
from simcast.infra.exceptions import CommandError
from simcast.types import DeviceState, Platform

_UDID_BOOTED = "11111111-AAAA-BBBB-CCCC-000000000001"
_UDID_SHUTDOWN = "11111111-AAAA-BBBB-CCCC-000000000002"

_SIMCTL_JSON = json.dumps(
    {
        "devices": {
            "com.apple.CoreSimulator.SimRuntime.iOS-17-2": [
                {"udid": _UDID_BOOTED, "name": "iPhone 15", "state": "Booted", "isAvailable": True},
                {"udid": _UDID_SHUTDOWN, "name": "iPad Air", "state": "Shutdown", "isAvailable": True},
                {"udid": "gone", "name": "Old", "state": "Shutdown", "isAvailable": False},
            ],
            "com.apple.CoreSimulator.SimRuntime.watchOS-10-0": [
                {"udid": "watch", "name": "Watch", "state": "Shutting Down", "isAvailable": True},
            ],
        }
    }
)


def _patch_run(side_effect):
    return patch("simcast.emulator._proc.run", new=AsyncMock(side_effect=side_effect))


def _simctl(list_output: str = _SIMCTL_JSON, fail_on: str | None = None):
    """模拟 xcrun simctl：``list`` 返回 JSON，其余命令返回空，*fail_on* 子命令报错。"""
    calls: list[tuple[str, ...]] = []

    async def _run(*cmd, timeout=None):
        calls.append(cmd)
        if fail_on is not None and fail_on in cmd:
            raise CommandError(cmd, returncode=1, stderr="boom")
        if "list" in cmd:
            return list_output
        return ""

    return _run, calls


# ═══════════════════════════════════════════════
# 解析
# ═══════════════════════════════════════════════


class TestParse:
    """测试 simctl 输出解析。"""

    @pytest.mark.parametrize(
        ("key", "label"),
        [
            ("com.apple.CoreSimulator.SimRuntime.iOS-17-2", "iOS 17.2"),
            ("iOS 16 4", "iOS 16.4"),
            ("com.apple.CoreSimulator.SimRuntime.watchOS-10-0", "com.apple.CoreSimulator.SimRuntime.watchOS-10-0"),
        ],
    )
    def test_runtime_label(self, key, label):
        assert runtime_label(key) == label

    def test_only_available(self):
        devices = parse_device_list(_SIMCTL_JSON)
        assert [d.id for d in devices] == [_UDID_BOOTED, _UDID_SHUTDOWN, "watch"]
        assert all(d.platform == Platform.ios for d in devices)

    def test_states(self):
        devices = {d.id: d for d in parse_device_list(_SIMCTL_JSON)}
        assert devices[_UDID_BOOTED].is_booted
        assert devices[_UDID_BOOTED].runtime == "iOS 17.2"
        assert devices[_UDID_SHUTDOWN].state == DeviceState.shutdown
        # 中间态按未启动处理
        assert devices["watch"].state == DeviceState.shutdown


# ═══════════════════════════════════════════════
# 后端
# ═══════════════════════════════════════════════


class TestIosBackend:
    """测试 iOS 后端命令调用。"""

    @pytest.mark.asyncio
    async def test_list_failure_returns_empty(self):
        run, _ = _simctl(fail_on="list")
        with _patch_run(run):
            assert await IosSimulatorBackend("xcrun").list_devices() == []

    @pytest.mark.asyncio
    async def test_list_without_xcrun(self):
        assert await IosSimulatorBackend(None).list_devices() == []

    @pytest.mark.asyncio
    async def test_boot_already_booted(self):
        run, calls = _simctl()
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").boot(_UDID_BOOTED)
        assert result.success
        assert result.already_booted
        assert not any("boot" in c for c in calls)

    @pytest.mark.asyncio
    async def test_boot_opens_simulator_app(self):
        run, calls = _simctl()
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").boot(_UDID_SHUTDOWN)
        assert result.success
        assert not result.already_booted
        assert ("xcrun", "simctl", "boot", _UDID_SHUTDOWN) in calls
        assert ("open", "-a", "Simulator", "--background") in calls

    @pytest.mark.asyncio
    async def test_boot_failure(self):
        run, _ = _simctl(fail_on="boot")
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").boot(_UDID_SHUTDOWN)
        assert not result.success
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_shutdown(self):
        run, calls = _simctl()
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").shutdown(_UDID_BOOTED)
        assert result.success
        assert ("xcrun", "simctl", "shutdown", _UDID_BOOTED) in calls

    @pytest.mark.asyncio
    async def test_launch_failure(self):
        run, _ = _simctl(fail_on="launch")
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").launch_app(_UDID_BOOTED, "com.example.app")
        assert not result.success

    @pytest.mark.asyncio
    async def test_input_not_supported(self):
        backend = IosSimulatorBackend("xcrun")
        for result in (
            await backend.send_touch(_UDID_BOOTED, 1, 2),
            await backend.send_text(_UDID_BOOTED, "hi"),
            await backend.send_key(_UDID_BOOTED, 3),
        ):
            assert not result.success
            assert "ios" in result.error

    @pytest.mark.asyncio
    async def test_screenshot_reads_file(self, tmp_path: Path, png_bytes):
        target = tmp_path / "frame.png"

        async def _run(*cmd, timeout=None):
            target.write_bytes(png_bytes)
            return ""

        with _patch_run(_run):
            data = await IosSimulatorBackend("xcrun").screenshot(_UDID_BOOTED, target)
        assert data == png_bytes

    @pytest.mark.asyncio
    async def test_screenshot_missing_file(self, tmp_path: Path):
        run, _ = _simctl()
        with _patch_run(run), pytest.raises(CommandError):
            await IosSimulatorBackend("xcrun").screenshot(_UDID_BOOTED, tmp_path / "none.png")

    @pytest.mark.asyncio
    async def test_save_screenshot(self, tmp_path: Path, png_bytes):
        target = tmp_path / "shot.png"

        async def _run(*cmd, timeout=None):
            target.write_bytes(png_bytes)
            return ""

        with _patch_run(_run):
            result = await IosSimulatorBackend("xcrun").save_screenshot(_UDID_BOOTED, target)
        assert result.success
        assert result.path == str(target)
        assert target.read_bytes() == png_bytes

    @pytest.mark.asyncio
    async def test_save_screenshot_failure(self, tmp_path: Path):
        run, _ = _simctl(fail_on="screenshot")
        with _patch_run(run):
            result = await IosSimulatorBackend("xcrun").save_screenshot(
                _UDID_BOOTED, tmp_path / "shot.png"
            )
        assert not result.success
        assert "boom" in result.error
