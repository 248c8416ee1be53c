"""基础设施层 — 日志、配置、异常体系、文件工具。"""

from .config import (
    AndroidConfig,
    AppConfig,
    CaptureConfig,
    ConfigManager,
    LogConfig,
    MirrorConfig,
    ServerConfig,
    WindowConfig,
)
from .exceptions import (
    BootTimeoutError,
    CommandError,
    ConfigError,
    EmulatorError,
    SimCastError,
    ToolNotFoundError,
)
from .file_utils import PNG_SIGNATURE, clear_dir, is_png, load_yaml
from .logger import setup_logger

__all__ = [
    # config
    "AndroidConfig",
    "AppConfig",
    "CaptureConfig",
    "ConfigManager",
    "LogConfig",
    "MirrorConfig",
    "ServerConfig",
    "WindowConfig",
    # exceptions
    "BootTimeoutError",
    "CommandError",
    "ConfigError",
    "EmulatorError",
    "SimCastError",
    "ToolNotFoundError",
    # file_utils
    "PNG_SIGNATURE",
    "clear_dir",
    "is_png",
    "load_yaml",
    # logger
    "setup_logger",
]
