"""采集服务 — 每台设备一个独立的定时采集循环。

会话状态机::

    Starting ──(窗口查找 / 投屏进程启动完成，无论成败)──▶ Running ──(stop)──▶ Stopped

采集策略
--------
- **iOS**：优先按窗口 id 截取 Simulator 合成窗口；取不到数据时回退到
  ``simctl io screenshot`` 整屏截图。窗口在两次采集之间丢失时，先重新查找一次再回退。
- **Android**：若找到 scrcpy，会话开始时启动一次作为低延迟的屏幕旁路显示；
  推送给订阅者的帧始终来自 ``adb exec-out screencap -p`` 的定时拉取。

单次采集失败只记录日志，不计数、不中断循环；异常不会逃出采集任务。

使用方式::

    service = CaptureService(config, devices, WindowLocator(config.window))
    result = await service.start("emulator-5554", Platform.android)
    frame = service.get_current_frame("emulator-5554")
    service.stop("emulator-5554")
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .bus import FrameBus
from .session import CaptureSession, SessionInfo
from simcast.emulator import DeviceManager, ToolPaths
from simcast.infra.config import AppConfig
from simcast.infra.exceptions import CommandError, ToolNotFoundError
from simcast.infra.file_utils import clear_dir, is_png
from simcast.types import Platform, SessionState
from simcast.window import WindowLocator

# ── 日志开关（由 infra.logger.setup_logger 写入）──────────────────────────────
_show_frame_detail: bool = False


def configure(*, show_frame_detail: bool = False) -> None:
    """配置采集服务的日志行为。

    Parameters
    ----------
    show_frame_detail:
        ``True`` 时输出每一帧的采集日志（序号/大小）；
        ``False``（默认）时静默，避免刷屏。
    """
    global _show_frame_detail
    _show_frame_detail = show_frame_detail


@dataclass(frozen=True, slots=True)
class StartResult:
    """:meth:`CaptureService.start` 的返回值。"""

    success: bool
    error: str | None = None
    already_running: bool = False
    info: SessionInfo | None = None


class CaptureService:
    """采集会话注册表的唯一持有者。

    会话表与"模拟器窗口已隐藏"标志只在事件循环线程内、于同步代码段中修改，
    因此同一设备上的 start / stop 天然原子：不会出现两个并行的采集循环。

    Parameters
    ----------
    config:
        应用配置。
    devices:
        设备管理器，用于启动前校验设备状态并执行截图命令。
    windows:
        窗口定位器（iOS 窗口采集）。
    bus:
        帧事件通道；为 None 时新建。
    tools:
        已解析的外部工具路径，用于查找 scrcpy；为 None 时不启动投屏。
    """

    def __init__(
        self,
        config: AppConfig,
        devices: DeviceManager,
        windows: WindowLocator,
        bus: FrameBus | None = None,
        tools: ToolPaths | None = None,
    ) -> None:
        self._config = config.capture
        self._mirror = config.mirror
        self._devices = devices
        self._windows = windows
        self.bus = bus or FrameBus()
        self._mirror_path = tools.mirror if tools is not None and config.mirror.enabled else None
        self._sessions: dict[str, CaptureSession] = {}
        self._window_hidden = False

    @property
    def window_hidden(self) -> bool:
        return self._window_hidden

    def _default_fps(self, platform: Platform) -> int:
        match platform:
            case Platform.ios:
                return self._config.ios_fps
            case Platform.android:
                return self._config.android_fps

    def _frame_path(self, session: CaptureSession, kind: str) -> Path:
        return self._config.temp_dir / f"{session.platform.value}-{session.device_id}-{kind}.png"

    # ── 会话生命周期 ──

    async def start(
        self,
        device_id: str,
        platform: Platform | str,
        *,
        fps: int | None = None,
        device_name: str = "",
    ) -> StartResult:
        """为设备启动采集会话。

        同一设备已有会话时不做任何事，返回 ``already_running=True``。
        设备不存在或未启动时返回失败结果。

        Raises
        ------
        ValueError
            ``fps`` 不是正整数。
        """
        platform = Platform(platform)
        if fps is not None and fps <= 0:
            raise ValueError(f"帧率必须为正整数: {fps}")
        existing = self._sessions.get(device_id)
        if existing is not None:
            logger.warning("[Capture] 设备 {} 已有采集会话，忽略重复启动", device_id)
            return StartResult(success=True, already_running=True, info=existing.info())

        session = CaptureSession(
            device_id=device_id,
            platform=platform,
            fps=fps if fps is not None else self._default_fps(platform),
            device_name=device_name,
        )
        # 在任何 await 之前登记，后续并发的 start 会看到 Starting 状态的会话
        self._sessions[device_id] = session
        logger.info(
            "[Capture] 启动采集会话: {} ({}) 目标帧率={}", device_id, platform.label, session.fps
        )

        try:
            error = await self._prepare(session)
        except BaseException:
            self._release(session)
            self._discard(session)
            raise

        if not session.running:
            # 启动期间被 stop：释放启动阶段之后才创建的资源
            self._release(session)
            return StartResult(success=False, error=f"设备 {device_id} 的采集会话在启动期间被停止")
        if error is not None:
            logger.error("[Capture] 采集会话启动失败: {}", error)
            session.state = SessionState.stopped
            self._release(session)
            self._discard(session)
            return StartResult(success=False, error=error)

        session.state = SessionState.running
        session.task = asyncio.create_task(
            self._run_loop(session), name=f"capture:{device_id}"
        )
        return StartResult(success=True, info=session.info())

    def stop(self, device_id: str) -> None:
        """停止设备的采集会话。未知或已停止的设备静默返回。

        返回前依次完成：取消采集任务、终止会话持有的外部进程、从会话表移除。
        此后不会再有该设备的帧事件。
        """
        session = self._sessions.get(device_id)
        if session is None:
            return
        session.state = SessionState.stopped
        if session.task is not None:
            session.task.cancel()
        self._release(session)
        self._discard(session)
        logger.info("[Capture] 已停止采集: {} (共 {} 帧)", device_id, session.frame_count)

    async def shutdown(self) -> None:
        """停止全部会话，恢复被隐藏的窗口，清空临时目录。"""
        tasks = [s.task for s in self._sessions.values() if s.task is not None]
        for device_id in list(self._sessions):
            self.stop(device_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.show_window()
        removed = clear_dir(self._config.temp_dir)
        logger.info("[Capture] 采集服务已关闭，清理临时文件 {} 个", removed)

    async def show_window(self) -> bool:
        """将之前移出屏幕的模拟器窗口恢复显示。未隐藏时返回 False。"""
        if not self._window_hidden:
            return False
        self._window_hidden = False
        return await self._windows.show()

    # ── 查询 ──

    def get_current_frame(self, device_id: str) -> bytes | None:
        session = self._sessions.get(device_id)
        return session.current_frame if session is not None else None

    def get_info(self, device_id: str) -> SessionInfo | None:
        session = self._sessions.get(device_id)
        return session.info() if session is not None else None

    def active_devices(self) -> list[str]:
        return list(self._sessions)

    # ── Starting 阶段 ──

    async def _prepare(self, session: CaptureSession) -> str | None:
        """校验设备状态并准备采集资源。返回错误描述，成功返回 None。"""
        device = await self._devices.resolve(session.device_id, session.platform)
        if device is None:
            return f"未找到设备 {session.device_id}"
        if not device.is_booted:
            return f"设备 {session.device_id} 未启动"
        if not session.running:
            return None
        if not session.device_name:
            session.device_name = device.name

        self._config.temp_dir.mkdir(parents=True, exist_ok=True)
        match session.platform:
            case Platform.ios:
                await self._attach_window(session)
            case Platform.android:
                session.serial = device.serial or session.device_id
                await self._start_mirror(session)
        return None

    async def _attach_window(self, session: CaptureSession) -> None:
        """查找模拟器窗口，最多尝试 ``window_discovery_attempts`` 次。找不到时回退整屏截图。"""
        attempts = self._config.window_discovery_attempts
        hint = session.device_name or session.device_id
        for attempt in range(1, attempts + 1):
            if not session.running:
                return
            window = await self._windows.find_window(hint)
            if window is not None:
                session.window = window
                break
            logger.info("[Capture] 等待模拟器窗口... ({}/{})", attempt, attempts)
            if attempt < attempts:
                await asyncio.sleep(self._config.window_discovery_interval)

        if session.window is None:
            logger.warning("[Capture] 未找到 {} 的模拟器窗口，使用 simctl 截图", hint)
            return

        if self._config.hide_window and not self._window_hidden:
            await asyncio.sleep(self._config.hide_delay)
            if session.running and not self._window_hidden:
                self._window_hidden = await self._windows.hide(session.window)

    async def _start_mirror(self, session: CaptureSession) -> None:
        """启动 scrcpy 投屏窗口。不可用或启动失败时仅使用截图拉取。"""
        if self._mirror_path is None:
            logger.info("[Capture] 未启用 scrcpy，{} 仅使用 adb 截图拉取", session.serial)
            return

        serial = session.serial or session.device_id
        try:
            proc = await asyncio.create_subprocess_exec(
                self._mirror_path,
                "-s",
                serial,
                "--max-fps",
                str(self._mirror.max_fps),
                "--video-bit-rate",
                str(self._mirror.bit_rate),
                "--window-title",
                f"{self._mirror.window_title_prefix}{serial}",
                "--stay-awake",
                "--no-audio",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("[Capture] scrcpy 启动失败，仅使用 adb 截图拉取: {}", exc)
            return

        session.mirror_process = proc
        session.mirror_watch = asyncio.create_task(
            self._watch_mirror(session, proc), name=f"mirror:{session.device_id}"
        )
        logger.info("[Capture] scrcpy 已启动: {} pid={}", serial, proc.pid)

    async def _watch_mirror(
        self, session: CaptureSession, proc: asyncio.subprocess.Process
    ) -> None:
        code = await proc.wait()
        if session.mirror_process is proc:
            session.mirror_process = None
        if session.running:
            logger.warning("[Capture] scrcpy 已退出 (code={})，继续使用 adb 截图拉取", code)

    # ── Running 阶段 ──

    async def _run_loop(self, session: CaptureSession) -> None:
        """按目标帧率循环采集。首帧立即采集。"""
        loop = asyncio.get_running_loop()
        while session.running:
            started = loop.time()
            try:
                await self._tick(session)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[Capture] {} 采集出现未预期异常", session.device_id)
            await asyncio.sleep(max(0.0, session.interval - (loop.time() - started)))

    async def _tick(self, session: CaptureSession) -> None:
        """执行一次采集；成功则更新会话并发布帧事件。"""
        match session.platform:
            case Platform.ios:
                data = await self._acquire_ios(session)
            case Platform.android:
                data = await self._acquire_android(session)

        # 采集期间会话可能已停止
        if not session.running:
            return
        if not is_png(data):
            session.failure_count += 1
            if session.failure_count == 1:
                logger.warning("[Capture] {} 采集失败，将持续重试", session.device_id)
            return

        session.failure_count = 0
        event = session.record_frame(data, time.time())
        delivered = self.bus.publish(event)
        if _show_frame_detail:
            logger.debug(
                "[Capture] {} 第 {} 帧 {} 字节 → {} 个订阅者",
                session.device_id, event.sequence, len(data), delivered,
            )

    async def _acquire_ios(self, session: CaptureSession) -> bytes | None:
        if session.window is None and session.window_lost:
            session.window_lost = False
            session.window = await self._windows.find_window(
                session.device_name or session.device_id
            )

        data: bytes | None = None
        if session.window is not None:
            data = await self._windows.capture_window(
                session.window.id, self._frame_path(session, "window")
            )
            if not is_png(data):
                logger.debug("[Capture] 窗口 {} 采集失败，标记为丢失", session.window.id)
                session.window = None
                session.window_lost = True
                data = None

        if data is None:
            try:
                data = await self._devices.ios.screenshot(
                    session.device_id, self._frame_path(session, "frame")
                )
            except (CommandError, ToolNotFoundError) as exc:
                logger.debug("[Capture] simctl 截图失败 {}: {}", session.device_id, exc)
                return None
        return data

    async def _acquire_android(self, session: CaptureSession) -> bytes | None:
        try:
            return await self._devices.android.screencap(session.serial or session.device_id)
        except (CommandError, ToolNotFoundError) as exc:
            logger.debug("[Capture] adb 截图失败 {}: {}", session.serial, exc)
            return None

    # ── 资源释放 ──

    def _release(self, session: CaptureSession) -> None:
        """终止会话持有的投屏进程。只处理本会话启动的进程。"""
        if session.mirror_watch is not None:
            session.mirror_watch.cancel()
            session.mirror_watch = None
        proc = session.mirror_process
        session.mirror_process = None
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                logger.debug("[Capture] scrcpy 已退出: pid={}", proc.pid)

    def _discard(self, session: CaptureSession) -> None:
        if self._sessions.get(session.device_id) is session:
            del self._sessions[session.device_id]
