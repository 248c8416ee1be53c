"""采集会话状态。"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from .bus import FrameEvent
from simcast.types import Platform, SessionState
from simcast.window import WindowHandle


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """会话状态快照，供 UI 层查询。"""

    device_id: str
    platform: Platform
    state: SessionState
    running: bool
    fps: int
    frame_count: int
    last_frame_time: float | None
    window_id: int | None
    mirroring: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "platform": self.platform.value,
            "state": self.state.value,
            "running": self.running,
            "fps": self.fps,
            "frameCount": self.frame_count,
            "lastFrameTime": self.last_frame_time,
            "windowId": self.window_id,
            "mirroring": self.mirroring,
        }


@dataclass(eq=False)
class CaptureSession:
    """单台设备的采集会话。

    由 :class:`~simcast.capture.service.CaptureService` 独占持有；
    会话拥有自己的采集任务与（Android）投屏进程，停止时一并释放。
    ``current_frame`` 只保存最近一帧，整体替换，不保留历史。
    """

    device_id: str
    platform: Platform
    fps: int
    device_name: str = ""
    serial: str | None = None
    state: SessionState = SessionState.starting
    frame_count: int = 0
    failure_count: int = 0
    last_frame_time: float | None = None
    current_frame: bytes | None = None
    # iOS：当前窗口；采集失败后置空并标记 window_lost，下一次 tick 重新查找一次
    window: WindowHandle | None = None
    window_lost: bool = False
    # Android：scrcpy 投屏进程及其退出监视任务
    mirror_process: asyncio.subprocess.Process | None = None
    mirror_watch: asyncio.Task[None] | None = field(default=None, repr=False)
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self.state != SessionState.stopped

    @property
    def interval(self) -> float:
        """两次采集之间的目标间隔（秒）。"""
        return 1.0 / self.fps

    def record_frame(self, data: bytes, timestamp: float) -> FrameEvent:
        """记录一帧成功采集的画面并生成事件。"""
        self.frame_count += 1
        self.current_frame = data
        self.last_frame_time = timestamp
        return FrameEvent(
            device_id=self.device_id,
            platform=self.platform,
            data=data,
            sequence=self.frame_count,
            timestamp=timestamp,
        )

    def info(self) -> SessionInfo:
        return SessionInfo(
            device_id=self.device_id,
            platform=self.platform,
            state=self.state,
            running=self.running,
            fps=self.fps,
            frame_count=self.frame_count,
            last_frame_time=self.last_frame_time,
            window_id=self.window.id if self.window else None,
            mirroring=self.mirror_process is not None and self.mirror_process.returncode is None,
        )
