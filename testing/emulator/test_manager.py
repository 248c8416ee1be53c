"""测试设备管理器的平台分发与故障隔离。"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from simcast.emulator import AndroidEmulatorBackend, Device, DeviceManager, IosSimulatorBackend, OperationResult
from simcast.infra.exceptions import BootTimeoutError
from simcast.types import DeviceState, Platform


def _device(device_id: str, platform: Platform, booted: bool = False) -> Device:
    return Device(
        id=device_id,
        platform=platform,
        name=device_id,
        runtime=platform.label,
        state=DeviceState.booted if booted else DeviceState.shutdown,
    )


@pytest.fixture
def manager() -> DeviceManager:
    ios = MagicMock(spec=IosSimulatorBackend)
    android = MagicMock(spec=AndroidEmulatorBackend)
    ios.list_devices = AsyncMock(return_value=[_device("udid-1", Platform.ios, booted=True)])
    android.list_devices = AsyncMock(return_value=[_device("Pixel_7", Platform.android)])
    return DeviceManager(ios, android)


class TestListAll:
    """测试跨平台设备汇总。"""

    @pytest.mark.asyncio
    async def test_ios_first(self, manager):
        devices = await manager.list_all()
        assert [d.id for d in devices] == ["udid-1", "Pixel_7"]

    @pytest.mark.asyncio
    async def test_android_failure_isolated(self, manager):
        manager.android.list_devices = AsyncMock(side_effect=RuntimeError("adb exploded"))
        devices = await manager.list_all()
        assert [d.id for d in devices] == ["udid-1"]

    @pytest.mark.asyncio
    async def test_ios_failure_isolated(self, manager):
        manager.ios.list_devices = AsyncMock(side_effect=RuntimeError("simctl exploded"))
        devices = await manager.list_all()
        assert [d.id for d in devices] == ["Pixel_7"]


class TestDispatch:
    """测试按平台分派操作。"""

    def test_backend(self, manager):
        assert manager.backend("ios") is manager.ios
        assert manager.backend(Platform.android) is manager.android

    def test_unknown_platform(self, manager):
        with pytest.raises(ValueError):
            manager.backend("windows")

    @pytest.mark.asyncio
    async def test_resolve(self, manager):
        manager.ios.find = AsyncMock(return_value=None)
        assert await manager.resolve("nope", Platform.ios) is None
        manager.ios.find.assert_awaited_once_with("nope")

    @pytest.mark.asyncio
    async def test_android_boot_passes_timeout(self, manager):
        manager.android.boot = AsyncMock(return_value=OperationResult.ok(serial="emulator-5554"))
        result = await manager.boot("Pixel_7", Platform.android, timeout=5)
        assert result.serial == "emulator-5554"
        manager.android.boot.assert_awaited_once_with("Pixel_7", timeout=5)

    @pytest.mark.asyncio
    async def test_boot_timeout_propagates(self, manager):
        manager.android.boot = AsyncMock(side_effect=BootTimeoutError("Pixel_7", 1))
        with pytest.raises(BootTimeoutError):
            await manager.boot("Pixel_7", Platform.android)

    @pytest.mark.asyncio
    async def test_boot_unexpected_error_is_result(self, manager):
        manager.ios.boot = AsyncMock(side_effect=RuntimeError("boom"))
        result = await manager.boot("udid-1", Platform.ios)
        assert not result.success
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_launch_app_activity_only_for_android(self, manager):
        manager.ios.launch_app = AsyncMock(return_value=OperationResult.ok())
        manager.android.launch_app = AsyncMock(return_value=OperationResult.ok())
        await manager.launch_app("udid-1", Platform.ios, "com.example")
        await manager.launch_app("Pixel_7", Platform.android, "com.example", ".Main")
        manager.ios.launch_app.assert_awaited_once_with("udid-1", "com.example")
        manager.android.launch_app.assert_awaited_once_with("Pixel_7", "com.example", ".Main")

    @pytest.mark.asyncio
    async def test_screenshot_dispatch(self, manager, tmp_path: Path):
        manager.ios.save_screenshot = AsyncMock(return_value=OperationResult.ok(path="a.png"))
        manager.android.save_screenshot = AsyncMock(return_value=OperationResult.ok(path="b.png"))
        await manager.screenshot("udid-1", "ios", tmp_path / "a.png")
        await manager.screenshot("Pixel_7", Platform.android, str(tmp_path / "b.png"))
        manager.ios.save_screenshot.assert_awaited_once_with("udid-1", tmp_path / "a.png")
        manager.android.save_screenshot.assert_awaited_once_with("Pixel_7", tmp_path / "b.png")

    @pytest.mark.asyncio
    async def test_screenshot_creates_parent_dir(self, manager, tmp_path: Path):
        target = tmp_path / "shots" / "day1" / "p.png"
        manager.android.save_screenshot = AsyncMock(return_value=OperationResult.ok(path=str(target)))
        result = await manager.screenshot("Pixel_7", Platform.android, target)
        assert result.path == str(target)
        assert target.parent.is_dir()


class TestOperationResult:
    """测试操作结果序列化。"""

    def test_to_dict_drops_none(self):
        assert OperationResult.ok().to_dict() == {"success": True, "already_booted": False}
        assert OperationResult.fail(RuntimeError("x")).to_dict() == {
            "success": False,
            "error": "x",
            "already_booted": False,
        }

    def test_device_to_dict(self):
        d = _device("udid-1", Platform.ios, booted=True)
        assert d.to_dict()["isBooted"] is True
        assert d.to_dict()["platform"] == "ios"
