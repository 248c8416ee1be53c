"""iOS 模拟器后端 — 基于 ``xcrun simctl``。

使用方式::

    backend = IosSimulatorBackend(xcrun="/usr/bin/xcrun")
    devices = await backend.list_devices()
    await backend.boot(devices[0].id)
"""

from __future__ import annotations

import json
import re
from pathlib import Path

from loguru import logger

from . import _proc
from .device import Device, OperationResult
from simcast.infra.exceptions import CommandError, ToolNotFoundError
from simcast.types import DeviceState, Platform

# com.apple.CoreSimulator.SimRuntime.iOS-17-2 → iOS 17.2
_RUNTIME_RE = re.compile(r"iOS[- ](\d+)[- ](\d+)", re.IGNORECASE)

# 单次 simctl 命令超时（秒）
_LIST_TIMEOUT = 30.0
_BOOT_TIMEOUT = 120.0
_SCREENSHOT_TIMEOUT = 10.0


def runtime_label(runtime_key: str) -> str:
    """将 simctl 的运行时键名转换为展示标签；无法识别时原样返回。"""
    match = _RUNTIME_RE.search(runtime_key)
    if match is None:
        return runtime_key
    return f"iOS {match.group(1)}.{match.group(2)}"


def parse_device_list(raw: str) -> list[Device]:
    """解析 ``simctl list devices -j`` 输出，仅保留可用设备，保持原有顺序。"""
    data = json.loads(raw)
    devices: list[Device] = []
    for runtime, entries in data.get("devices", {}).items():
        label = runtime_label(runtime)
        for entry in entries:
            if not entry.get("isAvailable", False):
                continue
            try:
                state = DeviceState(entry.get("state"))
            except ValueError:
                # Shutting Down / Creating 等中间态按未启动处理
                state = DeviceState.shutdown
            devices.append(
                Device(
                    id=entry["udid"],
                    platform=Platform.ios,
                    name=entry.get("name", entry["udid"]),
                    runtime=label,
                    state=state,
                )
            )
    return devices


class IosSimulatorBackend:
    """iOS 模拟器的枚举与生命周期管理。

    Parameters
    ----------
    xcrun:
        ``xcrun`` 路径；为 None 时所有操作以失败结果返回。
    app_name:
        模拟器合成窗口所在的应用名，启动后需保持运行以支持窗口采集。
    """

    platform = Platform.ios

    def __init__(self, xcrun: str | None, app_name: str = "Simulator") -> None:
        self._xcrun = xcrun
        self._app_name = app_name

    async def _simctl(self, *args: str, timeout: float | None = _LIST_TIMEOUT) -> str:
        if self._xcrun is None:
            raise ToolNotFoundError("xcrun")
        return await _proc.run(self._xcrun, "simctl", *args, timeout=timeout)

    # ── 枚举 ──

    async def list_devices(self) -> list[Device]:
        """列出所有可用的 iOS 模拟器。失败时返回空列表。"""
        try:
            raw = await self._simctl("list", "devices", "-j")
            return parse_device_list(raw)
        except (CommandError, ToolNotFoundError, ValueError, KeyError) as exc:
            logger.warning("[iOS] 获取模拟器列表失败: {}", exc)
            return []

    async def find(self, udid: str) -> Device | None:
        for device in await self.list_devices():
            if device.id == udid:
                return device
        return None

    # ── 生命周期 ──

    async def boot(self, udid: str) -> OperationResult:
        """启动模拟器。已启动时直接返回 ``already_booted=True``。"""
        device = await self.find(udid)
        if device is not None and device.is_booted:
            logger.info("[iOS] 模拟器 {} 已处于启动状态", udid)
            return OperationResult.ok(already_booted=True)

        try:
            logger.info("[iOS] 正在启动模拟器: {}", udid)
            await self._simctl("boot", udid, timeout=_BOOT_TIMEOUT)
            # 窗口采集依赖 Simulator.app 的合成窗口，后台打开即可
            await _proc.run("open", "-a", self._app_name, "--background", timeout=_LIST_TIMEOUT)
        except (CommandError, ToolNotFoundError) as exc:
            logger.error("[iOS] 启动模拟器失败: {}", exc)
            return OperationResult.fail(exc)
        return OperationResult.ok()

    async def shutdown(self, udid: str) -> OperationResult:
        return await self._one_shot("关闭模拟器", "shutdown", udid)

    async def install_app(self, udid: str, app_path: str | Path) -> OperationResult:
        return await self._one_shot("安装应用", "install", udid, str(app_path))

    async def launch_app(self, udid: str, bundle_id: str) -> OperationResult:
        return await self._one_shot("启动应用", "launch", udid, bundle_id)

    # ── 输入（simctl 不支持） ──

    async def send_touch(self, udid: str, x: int, y: int, action: str = "tap") -> OperationResult:
        return OperationResult.fail("触控输入不支持 ios 平台")

    async def send_text(self, udid: str, text: str) -> OperationResult:
        return OperationResult.fail("文本输入不支持 ios 平台")

    async def send_key(self, udid: str, key_code: int) -> OperationResult:
        return OperationResult.fail("按键输入不支持 ios 平台")

    # ── 截图 ──

    async def screenshot(self, udid: str, path: Path) -> bytes:
        """整屏截图写入 *path* 并读回字节。

        Raises
        ------
        CommandError
            simctl 失败或文件未生成。
        """
        await self._simctl(
            "io", udid, "screenshot", str(path), "--type=png", timeout=_SCREENSHOT_TIMEOUT
        )
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CommandError(["simctl", "io", udid, "screenshot"], stderr=str(exc)) from exc

    async def save_screenshot(self, udid: str, path: Path) -> OperationResult:
        """整屏截图保存到 *path*。成功时结果携带 ``path``。"""
        try:
            await self.screenshot(udid, path)
        except (CommandError, ToolNotFoundError) as exc:
            logger.warning("[iOS] 截图失败: {}", exc)
            return OperationResult.fail(exc)
        logger.info("[iOS] 截图已保存: {}", path)
        return OperationResult.ok(path=str(path))

    async def _one_shot(self, desc: str, *args: str) -> OperationResult:
        try:
            await self._simctl(*args, timeout=_BOOT_TIMEOUT)
        except (CommandError, ToolNotFoundError) as exc:
            logger.warning("[iOS] {}失败: {}", desc, exc)
            return OperationResult.fail(exc)
        logger.info("[iOS] {}: {}", desc, " ".join(args[1:]))
        return OperationResult.ok()
