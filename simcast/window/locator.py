"""模拟器窗口定位与合成窗口控制（macOS）。

窗口采集依赖 Simulator.app 的合成窗口保持绘制，因此"隐藏"是把窗口移到
屏幕外，而不是最小化或 ``visible = false``；关闭窗口会直接让窗口采集失效。

本模块的每个操作都只尝试一次，重试策略由采集服务负责。

使用方式::

    locator = WindowLocator(WindowConfig())
    handle = await locator.find_window("iPhone 15")
    png = await locator.capture_window(handle.id, Path("/tmp/frame.png"))
    await locator.hide(handle)
    await locator.show(handle)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from simcast.emulator import _proc
from simcast.infra.config import WindowConfig
from simcast.infra.exceptions import CommandError

# 单次 osascript / screencapture 超时（秒）
_SCRIPT_TIMEOUT = 10.0

# AppleScript 列表项分隔符：标题|||id
_FIELD_SEP = "|||"


@dataclass(frozen=True, slots=True)
class WindowHandle:
    """原生窗口句柄。每次会话启动时重新解析，不做持久化。"""

    id: int
    title: str


def _quote(text: str) -> str:
    """转义为 AppleScript 字符串字面量。"""
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def parse_window_list(raw: str) -> list[WindowHandle]:
    """解析 ``osascript`` 返回的 ``"标题|||id, 标题|||id"`` 列表。"""
    handles: list[WindowHandle] = []
    for item in raw.strip().split(", "):
        if _FIELD_SEP not in item:
            continue
        title, _, wid = item.rpartition(_FIELD_SEP)
        try:
            handles.append(WindowHandle(id=int(wid.strip()), title=title))
        except ValueError:
            continue
    return handles


def pick_window(windows: list[WindowHandle], name_hint: str) -> WindowHandle | None:
    """标题包含 *name_hint* 的第一个窗口；没有匹配时取第一个窗口。"""
    for window in windows:
        if name_hint and name_hint in window.title:
            return window
    return windows[0] if windows else None


def _quartz_windows(owner: str) -> list[WindowHandle]:
    """通过 CGWindowList 枚举属于 *owner* 的已命名窗口。在工作线程中调用。"""
    from Quartz import (
        CGWindowListCopyWindowInfo,
        kCGNullWindowID,
        kCGWindowListExcludeDesktopElements,
        kCGWindowListOptionOnScreenOnly,
    )

    infos = CGWindowListCopyWindowInfo(
        kCGWindowListOptionOnScreenOnly | kCGWindowListExcludeDesktopElements,
        kCGNullWindowID,
    )
    handles: list[WindowHandle] = []
    for info in infos or []:
        if info.get("kCGWindowOwnerName", "") != owner:
            continue
        title = info.get("kCGWindowName", "")
        if title:
            handles.append(WindowHandle(id=int(info.get("kCGWindowNumber", 0)), title=title))
    return handles


class WindowLocator:
    """Simulator 窗口的查找、采集与屏幕位置控制。

    同一时间只记住一个被隐藏窗口的原位置（最后一次 hide 生效），
    对"同一时间只有一个模拟器窗口在视野中"的使用方式足够。
    """

    def __init__(self, config: WindowConfig | None = None) -> None:
        self._config = config or WindowConfig()
        self._saved_position: tuple[int, int] | None = None

    @property
    def process_name(self) -> str:
        return self._config.process_name

    @property
    def saved_position(self) -> tuple[int, int] | None:
        return self._saved_position

    async def _osascript(self, script: str) -> str:
        return await _proc.run("osascript", "-e", script, timeout=_SCRIPT_TIMEOUT)

    # ── 查找 ──

    async def find_window(self, name_hint: str) -> WindowHandle | None:
        """查找标题包含 *name_hint* 的模拟器窗口。

        先用 AppleScript 枚举进程窗口；脚本整体失败时改用 CGWindowList。
        没有标题匹配时返回该进程的第一个窗口；进程没有窗口时返回 None。
        """
        script = (
            'tell application "System Events"\n'
            f"  tell process {_quote(self.process_name)}\n"
            "    set windowList to {}\n"
            "    repeat with w in windows\n"
            f'      set end of windowList to (name of w) & "{_FIELD_SEP}" & (id of w)\n'
            "    end repeat\n"
            "    return windowList\n"
            "  end tell\n"
            "end tell"
        )
        try:
            raw = await self._osascript(script)
        except CommandError as exc:
            logger.warning("[Window] AppleScript 枚举窗口失败，改用 CGWindowList: {}", exc)
            return await self._find_via_quartz(name_hint)

        window = pick_window(parse_window_list(raw), name_hint)
        if window is not None:
            logger.info("[Window] 找到模拟器窗口: \"{}\" id={}", window.title, window.id)
        return window

    async def _find_via_quartz(self, name_hint: str) -> WindowHandle | None:
        try:
            windows = await asyncio.to_thread(_quartz_windows, self.process_name)
        except ImportError:
            logger.warning("[Window] 未安装 pyobjc Quartz 框架，无法枚举窗口")
            return None
        except Exception as exc:
            logger.warning("[Window] CGWindowList 枚举窗口失败: {}", exc)
            return None

        window = pick_window(windows, name_hint)
        if window is not None:
            logger.info(
                "[Window] 通过 CGWindowList 找到模拟器窗口: \"{}\" id={}", window.title, window.id
            )
        return window

    # ── 采集 ──

    async def capture_window(self, window_id: int, path: Path) -> bytes | None:
        """按窗口 id 截图到 *path* 并读回字节；任何失败返回 None。

        *path* 是可反复覆盖的临时缓冲区，调用方无需逐次清理。
        """
        path.unlink(missing_ok=True)
        try:
            await _proc.run(
                "screencapture", f"-l{window_id}", "-x", "-o", str(path), timeout=_SCRIPT_TIMEOUT
            )
            return path.read_bytes()
        except (CommandError, OSError) as exc:
            logger.debug("[Window] 窗口截图失败 id={}: {}", window_id, exc)
            return None

    # ── 位置控制 ──

    def _window_ref(self, handle: WindowHandle | None) -> str:
        if handle is None:
            return "front window"
        return f"(first window whose name is {_quote(handle.title)})"

    def _position_script(self, body: str) -> str:
        return (
            'tell application "System Events"\n'
            f"  tell process {_quote(self.process_name)}\n"
            "    if (count of windows) > 0 then\n"
            f"      {body}\n"
            "    end if\n"
            "  end tell\n"
            "end tell"
        )

    async def read_position(self, handle: WindowHandle | None = None) -> tuple[int, int] | None:
        """读取窗口左上角坐标；失败返回 None。"""
        script = self._position_script(
            f"set {{x, y}} to position of {self._window_ref(handle)}\n"
            '      return (x as string) & "," & (y as string)',
        )
        try:
            raw = await self._osascript(script)
            x, y = (int(v.strip()) for v in raw.strip().split(","))
        except (CommandError, ValueError) as exc:
            logger.debug("[Window] 读取窗口位置失败: {}", exc)
            return None
        return x, y

    async def move(self, position: tuple[int, int], handle: WindowHandle | None = None) -> None:
        """移动窗口到 *position*。

        Raises
        ------
        CommandError
            osascript 执行失败。
        """
        x, y = position
        script = self._position_script(
            f"set position of {self._window_ref(handle)} to {{{x}, {y}}}"
        )
        await self._osascript(script)

    async def hide(self, handle: WindowHandle | None = None) -> bool:
        """记录窗口当前位置后将其移到屏幕外。

        读取位置失败不影响移动，之后 :meth:`show` 会恢复到默认位置。
        """
        self._saved_position = await self.read_position(handle)
        if self._saved_position is not None:
            logger.debug("[Window] 已记录窗口位置: {}", self._saved_position)
        try:
            await self.move(self._config.offscreen_position, handle)
        except CommandError as exc:
            logger.error("[Window] 移出屏幕失败: {}", exc)
            return False
        logger.info("[Window] 模拟器窗口已移出屏幕")
        return True

    async def show(self, handle: WindowHandle | None = None) -> bool:
        """将窗口移回记录的位置（无记录时用默认位置）并激活模拟器应用。"""
        position = self._saved_position or self._config.default_position
        try:
            await self.move(position, handle)
            await self._osascript(f"tell application {_quote(self.process_name)} to activate")
        except CommandError as exc:
            logger.error("[Window] 恢复窗口失败: {}", exc)
            return False
        logger.info("[Window] 模拟器窗口已恢复到 {}", position)
        return True
