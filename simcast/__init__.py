"""SimCast — iOS 模拟器 / Android 模拟器的设备控制与实时画面采集。"""

__version__ = "0.1.0"
