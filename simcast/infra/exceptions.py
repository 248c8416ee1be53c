"""SimCast 异常层级体系。

层级树::

    SimCastError
    ├── ConfigError
    └── EmulatorError
        ├── CommandError
        ├── BootTimeoutError
        └── ToolNotFoundError

单次外部命令失败（``CommandError``）通常在调用方被转换为
:class:`~simcast.emulator.device.OperationResult` 或一次失败的采集 tick，
不会继续向上抛出；``BootTimeoutError`` 则会直接抛给调用方，
以便区分"仍在启动"与"启动命令失败"。
"""

from __future__ import annotations

from collections.abc import Sequence


# ── 基类 ──


class SimCastError(Exception):
    """所有 SimCast 异常的基类。"""


# ── 基础设施异常 ──


class ConfigError(SimCastError):
    """配置文件无法解析或字段校验失败。"""


# ── 模拟器异常 ──


class EmulatorError(SimCastError):
    """模拟器 / 模拟器工具操作失败。"""


class CommandError(EmulatorError):
    """外部命令执行失败（非零退出码、可执行文件缺失或超时）。"""

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"命令执行失败: {' '.join(self.cmd)}"
        if returncode is not None:
            msg += f" (exit={returncode})"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class BootTimeoutError(EmulatorError):
    """等待设备启动完成超时。"""

    def __init__(self, device_id: str = "", timeout: float = 0) -> None:
        self.device_id = device_id
        self.timeout = timeout
        super().__init__(f"设备 '{device_id}' 启动超时 ({timeout:.1f}s)")


class ToolNotFoundError(EmulatorError):
    """未找到所需的外部工具。"""

    def __init__(self, tool: str) -> None:
        self.tool = tool
        super().__init__(f"未找到外部工具: {tool}")

