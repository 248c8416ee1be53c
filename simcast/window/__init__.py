"""窗口层 — 模拟器原生窗口的查找、采集与显隐控制（macOS）。"""

from simcast.window.locator import WindowHandle, WindowLocator

__all__ = [
    "WindowHandle",
    "WindowLocator",
]
