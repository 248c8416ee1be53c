"""外部工具路径解析。

搜索顺序（每个工具各自的候选列表）：

1. 配置文件中显式指定的路径
2. 固定的候选安装路径（SDK 目录、Homebrew 等）
3. 系统 PATH（``shutil.which``）

解析结果以 :class:`ToolPaths` 注入各后端，采集逻辑只关心"有没有"，
不关心"去哪找"。
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from simcast.infra.config import AppConfig

# scrcpy 常见安装位置
SCRCPY_CANDIDATES: tuple[str, ...] = (
    "/opt/homebrew/bin/scrcpy",
    "/usr/local/bin/scrcpy",
    "/usr/bin/scrcpy",
    "~/scrcpy/scrcpy",
)


def find_executable(name: str, candidates: Iterable[str | Path | None] = ()) -> str | None:
    """返回第一个存在的可执行文件路径；都不存在时查 PATH；仍找不到返回 None。

    Parameters
    ----------
    name:
        PATH 中查找用的命令名。
    candidates:
        优先检查的候选路径，``None`` 项会被跳过。
    """
    for candidate in candidates:
        if candidate is None:
            continue
        path = os.path.expanduser(os.fspath(candidate))
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    return shutil.which(name)


@dataclass(frozen=True, slots=True)
class ToolPaths:
    """已解析的外部工具路径。未找到的工具为 ``None``。

    Attributes
    ----------
    xcrun:
        Xcode 命令行工具入口（``simctl`` 经由它调用）。
    adb:
        Android Debug Bridge。
    emulator:
        Android SDK 的 ``emulator`` 启动器。
    mirror:
        可选的 scrcpy 投屏工具。
    """

    xcrun: str | None = None
    adb: str | None = None
    emulator: str | None = None
    mirror: str | None = None

    @classmethod
    def resolve(cls, config: AppConfig) -> ToolPaths:
        """按配置解析所有工具路径。"""
        android = config.android
        sdk = android.sdk_root.expanduser()
        paths = cls(
            xcrun=find_executable("xcrun"),
            adb=find_executable(
                "adb", [android.adb_path, sdk / "platform-tools" / "adb"]
            ),
            emulator=find_executable(
                "emulator", [android.emulator_path, sdk / "emulator" / "emulator"]
            ),
            mirror=find_executable("scrcpy", [config.mirror.path, *SCRCPY_CANDIDATES]),
        )
        logger.debug(
            "[Tools] xcrun={} adb={} emulator={} scrcpy={}",
            paths.xcrun, paths.adb, paths.emulator, paths.mirror,
        )
        return paths
