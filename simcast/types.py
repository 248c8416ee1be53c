"""全局枚举类型定义。

设备平台、设备状态、采集会话状态等枚举集中于此，供各层引用。
"""

from __future__ import annotations

from enum import Enum


# ── 枚举基类 ──


class BaseEnum(Enum):
    """提供更友好的中文报错信息。"""

    @classmethod
    def _missing_(cls, value: object) -> None:
        supported = ", ".join(str(m.value) for m in cls)
        raise ValueError(f'"{value}" 不是合法的 {cls.__name__} 取值。 支持: [{supported}]')


class StrEnum(str, BaseEnum):
    """字符串枚举基类。"""


# ── 设备 ──


class Platform(StrEnum):
    """设备平台。"""

    ios = "ios"
    android = "android"

    @property
    def label(self) -> str:
        """日志中使用的平台标签。"""
        match self:
            case Platform.ios:
                return "iOS"
            case Platform.android:
                return "Android"


class DeviceState(StrEnum):
    """设备启动状态。取值与 ``simctl`` 输出保持一致。"""

    shutdown = "Shutdown"
    booting = "Booting"
    booted = "Booted"


# ── 采集 ──


class SessionState(StrEnum):
    """采集会话状态机：``Starting → Running → Stopped``。"""

    starting = "Starting"
    running = "Running"
    stopped = "Stopped"
