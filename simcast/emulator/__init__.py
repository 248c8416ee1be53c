"""模拟器层 — 设备枚举与生命周期控制。

提供两大核心能力：

1. **设备枚举** (`DeviceManager.list_all`)：
   每次调用都重新查询 iOS 模拟器（``simctl``）与 Android AVD（``emulator`` + ``adb``）。

2. **生命周期控制** (`DeviceManager.boot` / `shutdown` / `install_app` …)：
   一次性操作，返回 :class:`OperationResult`，不重试。
"""

from simcast.emulator.android import AndroidEmulatorBackend, RunningEmulator
from simcast.emulator.device import Device, OperationResult
from simcast.emulator.ios import IosSimulatorBackend
from simcast.emulator.manager import DeviceManager
from simcast.emulator.tools import ToolPaths, find_executable

__all__ = [
    # backends
    "AndroidEmulatorBackend",
    "IosSimulatorBackend",
    "RunningEmulator",
    # device
    "Device",
    "OperationResult",
    # manager
    "DeviceManager",
    # tools
    "ToolPaths",
    "find_executable",
]
