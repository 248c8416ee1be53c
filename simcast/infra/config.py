"""配置管理 — 基于 Pydantic v2。

配置从 YAML 文件加载，经过 Pydantic 校验后生成不可变的配置对象。

使用方式::

    from simcast.infra.config import ConfigManager

    config = ConfigManager.load("simcast.yaml")
    print(config.server.port)
"""

from __future__ import annotations

import datetime
import os
import tempfile
from pathlib import Path
from typing import Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError
from .file_utils import load_yaml


def _default_sdk_root() -> Path:
    """Android SDK 根目录：``$ANDROID_HOME`` → ``$ANDROID_SDK_ROOT`` → macOS 默认位置。"""
    env = os.environ.get("ANDROID_HOME") or os.environ.get("ANDROID_SDK_ROOT")
    if env:
        return Path(env)
    return Path.home() / "Library" / "Android" / "sdk"


# ── 子配置模型 ──


class AndroidConfig(BaseModel):
    """Android SDK / 模拟器配置。"""

    model_config = {"frozen": True}

    sdk_root: Path = Field(default_factory=_default_sdk_root)
    """Android SDK 根目录"""
    adb_path: Path | None = None
    """adb 可执行文件路径。None = ``<sdk>/platform-tools/adb``，找不到再查 PATH"""
    emulator_path: Path | None = None
    """emulator 可执行文件路径。None = ``<sdk>/emulator/emulator``，找不到再查 PATH"""
    emulator_args: list[str] = Field(
        default_factory=lambda: ["-no-boot-anim", "-no-audio", "-gpu", "auto"]
    )
    """启动 AVD 时附加的参数"""
    boot_timeout: float = 60.0
    """等待 ``sys.boot_completed`` 的超时（秒）"""
    boot_poll_interval: float = 1.0
    """启动状态轮询间隔（秒）"""

    @field_validator("boot_timeout", "boot_poll_interval")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("超时与轮询间隔必须为正数")
        return v


class MirrorConfig(BaseModel):
    """外部投屏工具（scrcpy）配置。"""

    model_config = {"frozen": True}

    enabled: bool = True
    """是否在 Android 会话开始时启动投屏窗口"""
    path: Path | None = None
    """scrcpy 路径。None = 自动查找"""
    max_fps: int = 30
    """投屏帧率上限"""
    bit_rate: int = 8_000_000
    """投屏码率上限 (bit/s)"""
    window_title_prefix: str = "SimCast - "
    """投屏窗口标题前缀，后接设备 serial"""


class CaptureConfig(BaseModel):
    """采集会话配置。"""

    model_config = {"frozen": True}

    ios_fps: int = 30
    """iOS 窗口采集目标帧率"""
    android_fps: int = 10
    """Android 截图拉取目标帧率"""
    window_discovery_attempts: int = 10
    """会话启动时查找模拟器窗口的最大尝试次数"""
    window_discovery_interval: float = 1.0
    """窗口查找重试间隔（秒）"""
    hide_window: bool = True
    """找到窗口后是否将其移出屏幕"""
    hide_delay: float = 0.5
    """找到窗口到移出屏幕之间的等待（秒）"""
    temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "simcast-capture"
    )
    """截图临时文件目录"""

    @field_validator("ios_fps", "android_fps", "window_discovery_attempts")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("帧率与尝试次数必须为正整数")
        return v

    @field_validator("window_discovery_interval", "hide_delay")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("等待时间不能为负数")
        return v


class WindowConfig(BaseModel):
    """原生模拟器窗口配置。"""

    model_config = {"frozen": True}

    process_name: str = "Simulator"
    """合成窗口所属的进程 / 应用名"""
    offscreen_position: tuple[int, int] = (-3000, 100)
    """隐藏时移动到的屏幕外坐标"""
    default_position: tuple[int, int] = (100, 100)
    """未记录原位置时恢复到的坐标"""


class ServerConfig(BaseModel):
    """帧分发 HTTP 服务配置。"""

    model_config = {"frozen": True}

    host: str = "127.0.0.1"
    port: int = 8765
    stream_queue_size: int = 8
    """每个 /stream 客户端的帧队列容量，满时丢弃最旧帧"""
    disconnect_check_interval: float = 0.5
    """空闲 /stream 连接检查客户端是否断开的间隔 (秒)"""

    @field_validator("port")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("端口必须为 1–65535 之间的整数")
        return v

    @field_validator("stream_queue_size", "disconnect_check_interval")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("队列容量与检查间隔必须为正数")
        return v


class LogConfig(BaseModel):
    """日志配置。"""

    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    """日志级别"""
    root: Path = Path("log")
    """日志保存根目录"""
    dir: Path | None = None
    """日志保存路径。自动按日期生成"""
    show_frame_detail: bool = False
    """是否输出逐帧采集日志"""

    @model_validator(mode="after")
    def _set_log_dir(self) -> LogConfig:
        if self.dir is None:
            ts = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            object.__setattr__(self, "dir", self.root / ts)
        return self


# ── 顶层配置 ──


class AppConfig(BaseModel):
    """应用配置（顶层聚合）。"""

    model_config = {"frozen": True}

    android: AndroidConfig = Field(default_factory=AndroidConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> AppConfig:
        """从 YAML 文件加载配置。"""
        data = load_yaml(path)
        return cls.model_validate(data)


# ── ConfigManager ──


class ConfigManager:
    """配置管理器 — 提供加载入口。"""

    @staticmethod
    def load(path: str | Path | None) -> AppConfig:
        """从文件加载配置。未指定或不存在时返回默认配置。

        Raises
        ------
        ConfigError
            YAML 语法错误或字段校验失败。
        """
        if path is None:
            return AppConfig()
        path = Path(path)
        if not path.exists():
            logger.warning("配置文件 {} 不存在，使用默认配置", path)
            return AppConfig()
        try:
            config = AppConfig.from_yaml(path)
        except (ValidationError, yaml.YAMLError) as exc:
            raise ConfigError(f"配置文件 {path} 无效: {exc}") from exc
        logger.info("已加载配置: {}", path)
        return config
