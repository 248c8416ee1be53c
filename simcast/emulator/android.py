"""Android 模拟器后端 — 基于 ``emulator`` 与 ``adb``。

枚举流程
--------
1. ``emulator -list-avds`` 列出全部 AVD 名称。
2. ``adb devices`` 获取在线的 ``emulator-NNNN`` 实例。
3. 对每个在线实例执行 ``adb -s <serial> emu avd name`` 得到其 AVD 名称，
   与第 1 步交叉比对，确定启动状态与 serial。

单个实例的身份查询失败不影响整体枚举（该实例 ``avd_name`` 为 None）；
``adb devices`` 整体失败则视为没有在线实例。
"""

from __future__ import annotations

import asyncio
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from . import _proc
from .device import Device, OperationResult
from simcast.infra.config import AndroidConfig
from simcast.infra.exceptions import BootTimeoutError, CommandError, ToolNotFoundError
from simcast.types import DeviceState, Platform

_DEVICE_LINE_RE = re.compile(r"^(emulator-\d+)\s+device$")
_SERIAL_RE = re.compile(r"^emulator-\d+$")

# 单次 adb 命令超时（秒）
_QUERY_TIMEOUT = 10.0
_INSTALL_TIMEOUT = 300.0


@dataclass(frozen=True, slots=True)
class RunningEmulator:
    """一个在线的模拟器实例。"""

    serial: str
    avd_name: str | None


def parse_adb_devices(raw: str) -> list[str]:
    """从 ``adb devices`` 输出中提取状态为 ``device`` 的模拟器 serial。"""
    serials: list[str] = []
    for line in raw.strip().splitlines()[1:]:  # 跳过 "List of devices attached"
        match = _DEVICE_LINE_RE.match(line.strip())
        if match:
            serials.append(match.group(1))
    return serials


class AndroidEmulatorBackend:
    """Android 模拟器的枚举、启动与设备操作。

    Parameters
    ----------
    adb:
        adb 路径；为 None 时枚举返回空列表，操作以失败结果返回。
    emulator:
        emulator 启动器路径；为 None 时无法枚举和启动 AVD。
    config:
        Android 配置（启动参数、启动超时、轮询间隔）。
    """

    platform = Platform.android

    def __init__(
        self,
        adb: str | None,
        emulator: str | None,
        config: AndroidConfig | None = None,
    ) -> None:
        self._adb_path = adb
        self._emulator_path = emulator
        self._config = config or AndroidConfig()
        # 由本进程启动的模拟器进程（AVD 名 → 进程句柄）。
        # 模拟器独立于本进程存活，句柄只用于查询退出状态，从不主动终止
        self._processes: dict[str, subprocess.Popen] = {}

    async def _adb(self, *args: str, timeout: float | None = _QUERY_TIMEOUT) -> str:
        if self._adb_path is None:
            raise ToolNotFoundError("adb")
        return await _proc.run(self._adb_path, *args, timeout=timeout)

    # ── 枚举 ──

    async def running_devices(self) -> list[RunningEmulator]:
        """列出在线的模拟器实例及其 AVD 名称。``adb devices`` 失败时返回空列表。"""
        try:
            raw = await self._adb("devices")
        except (CommandError, ToolNotFoundError) as exc:
            logger.debug("[Android] adb devices 失败: {}", exc)
            return []

        running: list[RunningEmulator] = []
        for serial in parse_adb_devices(raw):
            try:
                out = await self._adb("-s", serial, "emu", "avd", "name")
                lines = out.strip().splitlines()
                avd_name = lines[0].strip() if lines else None
            except CommandError as exc:
                logger.debug("[Android] 查询 {} 的 AVD 名称失败: {}", serial, exc)
                avd_name = None
            running.append(RunningEmulator(serial=serial, avd_name=avd_name))
        return running

    async def list_devices(self) -> list[Device]:
        """列出全部 AVD，并标记已启动实例的 serial。失败时返回空列表。"""
        if self._emulator_path is None:
            logger.info("[Android] 未找到 emulator 可执行文件，跳过 Android 设备枚举")
            return []
        try:
            raw = await _proc.run(self._emulator_path, "-list-avds", timeout=30.0)
        except CommandError as exc:
            logger.warning("[Android] 获取 AVD 列表失败: {}", exc)
            return []

        avd_names = [name.strip() for name in raw.splitlines() if name.strip()]
        running = {r.avd_name: r.serial for r in await self.running_devices() if r.avd_name}
        return [
            Device(
                id=name,
                platform=Platform.android,
                name=name,
                runtime="Android",
                state=DeviceState.booted if name in running else DeviceState.shutdown,
                serial=running.get(name),
            )
            for name in avd_names
        ]

    async def find(self, device_id: str) -> Device | None:
        """按 AVD 名称或 serial 查找设备。"""
        for device in await self.list_devices():
            if device_id in (device.id, device.serial):
                return device
        return None

    async def resolve_serial(self, device_id: str) -> str | None:
        """将设备标识解析为 serial。``emulator-NNNN`` 形式直接返回。"""
        if _SERIAL_RE.match(device_id):
            return device_id
        for r in await self.running_devices():
            if r.avd_name == device_id:
                return r.serial
        return None

    # ── 生命周期 ──

    async def boot(
        self,
        avd_name: str,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> OperationResult:
        """启动 AVD 并等待系统启动完成。

        Raises
        ------
        BootTimeoutError
            超过 *timeout* 仍未读到 ``sys.boot_completed=1``。
        """
        serial = await self.resolve_serial(avd_name)
        if serial is not None:
            logger.info("[Android] 模拟器 {} 已在运行: {}", avd_name, serial)
            return OperationResult.ok(already_booted=True, serial=serial)

        if self._emulator_path is None:
            return OperationResult.fail(ToolNotFoundError("emulator"))

        logger.info("[Android] 正在启动模拟器: {}", avd_name)
        try:
            # 独立会话且不挂在事件循环上：调用方（如 CLI）退出后模拟器继续运行
            proc = subprocess.Popen(
                [self._emulator_path, "-avd", avd_name, *self._config.emulator_args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("[Android] 启动模拟器进程失败: {}", exc)
            return OperationResult.fail(exc)
        self._processes[avd_name] = proc

        serial = await self.wait_for_boot(
            avd_name,
            timeout=timeout if timeout is not None else self._config.boot_timeout,
            poll_interval=(
                poll_interval if poll_interval is not None else self._config.boot_poll_interval
            ),
        )
        return OperationResult.ok(serial=serial)

    async def wait_for_boot(
        self,
        avd_name: str,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> str:
        """轮询 ``sys.boot_completed`` 直到为 ``1``，返回实例 serial。

        启动早期 adb 命令经常失败，超时前一律忽略并继续轮询。

        Raises
        ------
        BootTimeoutError
            超时。
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            serial = await self.resolve_serial(avd_name)
            if serial is not None:
                try:
                    value = await self._adb("-s", serial, "shell", "getprop", "sys.boot_completed")
                    if value.strip() == "1":
                        logger.info("[Android] 模拟器 {} 启动完成: {}", avd_name, serial)
                        return serial
                except (CommandError, ToolNotFoundError) as exc:
                    logger.debug("[Android] 读取启动状态失败（继续等待）: {}", exc)
            await asyncio.sleep(poll_interval)
        raise BootTimeoutError(avd_name, timeout)

    async def shutdown(self, device_id: str) -> OperationResult:
        result = await self._device_cmd("关闭模拟器", device_id, "emu", "kill")
        if result.success:
            # 模拟器自行退出，这里只释放句柄
            for name, proc in list(self._processes.items()):
                if name == device_id or proc.poll() is not None:
                    del self._processes[name]
        return result

    async def install_app(self, device_id: str, apk_path: str | Path) -> OperationResult:
        return await self._device_cmd(
            "安装应用", device_id, "install", "-r", str(apk_path), timeout=_INSTALL_TIMEOUT
        )

    async def launch_app(
        self, device_id: str, package: str, activity: str | None = None
    ) -> OperationResult:
        component = f"{package}/{activity}" if activity else package
        return await self._device_cmd(
            "启动应用", device_id, "shell", "am", "start", "-n", component
        )

    # ── 输入 ──

    async def send_touch(
        self, device_id: str, x: int, y: int, action: str = "tap", duration: float = 1.0
    ) -> OperationResult:
        """发送触控。``tap`` 点击；``long_press`` 以原地滑动实现长按。"""
        match action:
            case "tap":
                args = ("shell", "input", "tap", str(x), str(y))
            case "long_press":
                ms = int(duration * 1000)
                args = ("shell", "input", "swipe", str(x), str(y), str(x), str(y), str(ms))
            case _:
                return OperationResult.fail(f"不支持的触控动作: {action}")
        return await self._device_cmd("触控", device_id, *args)

    async def send_text(self, device_id: str, text: str) -> OperationResult:
        # input text 不接受空格，需转义为 %s
        encoded = text.replace(" ", "%s")
        return await self._device_cmd("文本输入", device_id, "shell", "input", "text", encoded)

    async def send_key(self, device_id: str, key_code: int) -> OperationResult:
        return await self._device_cmd(
            "按键", device_id, "shell", "input", "keyevent", str(key_code)
        )

    # ── 截图 ──

    async def screencap(self, serial: str) -> bytes:
        """通过 ``exec-out`` 直接拉取 PNG 截图字节。

        Raises
        ------
        CommandError
            adb 失败或超时。
        ToolNotFoundError
            未找到 adb。
        """
        if self._adb_path is None:
            raise ToolNotFoundError("adb")
        return await _proc.run_bytes(
            self._adb_path, "-s", serial, "exec-out", "screencap", "-p", timeout=_QUERY_TIMEOUT
        )

    async def save_screenshot(self, device_id: str, path: Path) -> OperationResult:
        """整屏截图保存到 *path*。成功时结果携带 ``path``。"""
        serial = await self.resolve_serial(device_id)
        if serial is None:
            return OperationResult.fail(f"设备 {device_id} 未在运行")
        try:
            data = await self.screencap(serial)
            path.write_bytes(data)
        except (CommandError, ToolNotFoundError, OSError) as exc:
            logger.warning("[Android] 截图失败 ({}): {}", serial, exc)
            return OperationResult.fail(exc)
        logger.info("[Android] 截图已保存: {}", path)
        return OperationResult.ok(serial=serial, path=str(path))

    # ── 辅助 ──

    async def _device_cmd(
        self,
        desc: str,
        device_id: str,
        *args: str,
        timeout: float | None = _QUERY_TIMEOUT,
    ) -> OperationResult:
        """对指定设备执行一次 adb 命令，不重试，失败转换为结果对象。"""
        serial = await self.resolve_serial(device_id)
        if serial is None:
            return OperationResult.fail(f"设备 {device_id} 未在运行")
        try:
            await self._adb("-s", serial, *args, timeout=timeout)
        except (CommandError, ToolNotFoundError) as exc:
            logger.warning("[Android] {}失败 ({}): {}", desc, serial, exc)
            return OperationResult.fail(exc)
        logger.debug("[Android] {} ({}): {}", desc, serial, " ".join(args))
        return OperationResult.ok(serial=serial)
