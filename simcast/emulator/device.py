"""设备与操作结果数据类型。"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from simcast.types import DeviceState, Platform


@dataclass(frozen=True, slots=True)
class Device:
    """平台无关的设备视图。每次枚举都重新生成，不做缓存。

    Attributes
    ----------
    id:
        设备标识：iOS 为 UDID，Android 为 AVD 名称。
    platform:
        设备平台。
    name:
        展示名称。
    runtime:
        运行时标签，如 ``"iOS 17.2"``、``"Android"``。
    state:
        启动状态。
    serial:
        仅 Android：已启动实例的 ADB serial（如 ``"emulator-5554"``）。
    """

    id: str
    platform: Platform
    name: str
    runtime: str
    state: DeviceState
    serial: str | None = None

    @property
    def is_booted(self) -> bool:
        return self.state == DeviceState.booted

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "name": self.name,
            "runtime": self.runtime,
            "state": self.state.value,
            "isBooted": self.is_booted,
            "serial": self.serial,
        }


@dataclass(frozen=True, slots=True)
class OperationResult:
    """一次生命周期操作的结果。失败时 ``error`` 为错误描述。"""

    success: bool
    error: str | None = None
    already_booted: bool = False
    serial: str | None = None
    path: str | None = None

    @classmethod
    def ok(
        cls,
        *,
        already_booted: bool = False,
        serial: str | None = None,
        path: str | None = None,
    ) -> OperationResult:
        return cls(success=True, already_booted=already_booted, serial=serial, path=path)

    @classmethod
    def fail(cls, error: str | BaseException) -> OperationResult:
        return cls(success=False, error=str(error))

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
