"""设备管理器 — 两个平台后端的统一入口。

使用方式::

    from simcast.emulator import DeviceManager, ToolPaths

    manager = DeviceManager.from_config(config)
    devices = await manager.list_all()
    result = await manager.boot("Pixel_7_API_34", Platform.android)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from .android import AndroidEmulatorBackend
from .device import Device, OperationResult
from .ios import IosSimulatorBackend
from .tools import ToolPaths
from simcast.infra.config import AppConfig
from simcast.infra.exceptions import BootTimeoutError
from simcast.types import Platform


class DeviceManager:
    """iOS / Android 设备的枚举与生命周期控制。

    设备状态每次调用都重新查询，不做缓存：模拟器可能在本进程之外被启动或关闭。
    """

    def __init__(self, ios: IosSimulatorBackend, android: AndroidEmulatorBackend) -> None:
        self.ios = ios
        self.android = android

    @classmethod
    def from_config(cls, config: AppConfig, tools: ToolPaths | None = None) -> DeviceManager:
        tools = tools or ToolPaths.resolve(config)
        return cls(
            ios=IosSimulatorBackend(tools.xcrun, app_name=config.window.process_name),
            android=AndroidEmulatorBackend(tools.adb, tools.emulator, config.android),
        )

    def backend(self, platform: Platform | str) -> IosSimulatorBackend | AndroidEmulatorBackend:
        """按平台返回对应后端。

        Raises
        ------
        ValueError
            未知平台。
        """
        match Platform(platform):
            case Platform.ios:
                return self.ios
            case Platform.android:
                return self.android

    # ── 枚举 ──

    async def list_devices(self, platform: Platform | str) -> list[Device]:
        return await self.backend(platform).list_devices()

    async def list_all(self) -> list[Device]:
        """并发查询两个平台，iOS 在前、Android 在后。任一平台失败只影响自身。"""
        results = await asyncio.gather(
            self.ios.list_devices(),
            self.android.list_devices(),
            return_exceptions=True,
        )
        devices: list[Device] = []
        for platform, result in zip((Platform.ios, Platform.android), results):
            if isinstance(result, BaseException):
                logger.error("[Devices] {} 设备枚举异常: {}", platform.label, result)
                continue
            devices.extend(result)
        return devices

    async def resolve(self, device_id: str, platform: Platform | str) -> Device | None:
        """重新查询并返回指定设备；不存在时返回 None。"""
        return await self.backend(platform).find(device_id)

    # ── 生命周期 ──

    async def boot(
        self,
        device_id: str,
        platform: Platform | str,
        timeout: float | None = None,
    ) -> OperationResult:
        """启动设备（幂等）。

        Raises
        ------
        BootTimeoutError
            Android 启动轮询超时。与普通失败区分，调用方可稍后重试。
        """
        backend = self.backend(platform)
        try:
            if isinstance(backend, AndroidEmulatorBackend):
                return await backend.boot(device_id, timeout=timeout)
            return await backend.boot(device_id)
        except BootTimeoutError:
            raise
        except Exception as exc:
            logger.exception("[Devices] 启动设备 {} 时出现未预期异常", device_id)
            return OperationResult.fail(exc)

    async def shutdown(self, device_id: str, platform: Platform | str) -> OperationResult:
        return await self.backend(platform).shutdown(device_id)

    async def install_app(
        self, device_id: str, platform: Platform | str, app_path: str | Path
    ) -> OperationResult:
        return await self.backend(platform).install_app(device_id, app_path)

    async def launch_app(
        self,
        device_id: str,
        platform: Platform | str,
        app_id: str,
        activity: str | None = None,
    ) -> OperationResult:
        """启动应用。iOS 的 *app_id* 为 bundle id，Android 为包名（可附带 activity）。"""
        backend = self.backend(platform)
        if isinstance(backend, AndroidEmulatorBackend):
            return await backend.launch_app(device_id, app_id, activity)
        return await backend.launch_app(device_id, app_id)

    async def screenshot(
        self, device_id: str, platform: Platform | str, path: str | Path
    ) -> OperationResult:
        """一次性整屏截图保存到 *path*（父目录不存在时自动创建）。"""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return OperationResult.fail(exc)
        return await self.backend(platform).save_screenshot(device_id, path)

    # ── 输入 ──

    async def send_touch(
        self, device_id: str, platform: Platform | str, x: int, y: int, action: str = "tap"
    ) -> OperationResult:
        return await self.backend(platform).send_touch(device_id, x, y, action)

    async def send_text(self, device_id: str, platform: Platform | str, text: str) -> OperationResult:
        return await self.backend(platform).send_text(device_id, text)

    async def send_key(
        self, device_id: str, platform: Platform | str, key_code: int
    ) -> OperationResult:
        return await self.backend(platform).send_key(device_id, key_code)
