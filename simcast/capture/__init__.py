"""采集层 — 每设备采集会话与帧事件分发。"""

from simcast.capture.bus import FrameBus, FrameEvent, Subscription
from simcast.capture.service import CaptureService, StartResult
from simcast.capture.session import CaptureSession, SessionInfo

__all__ = [
    # bus
    "FrameBus",
    "FrameEvent",
    "Subscription",
    # service
    "CaptureService",
    "StartResult",
    # session
    "CaptureSession",
    "SessionInfo",
]
