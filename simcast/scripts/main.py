"""命令行入口。

::

    simcast devices [--platform ios|android]
    simcast boot <device_id> --platform android
    simcast shutdown <device_id> --platform ios
    simcast screenshot <device_id> --platform ios -o frame.png
    simcast serve --config simcast.yaml --capture emulator-5554:android --capture <UDID>:ios
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence

from loguru import logger

from simcast.capture import CaptureService, FrameBus
from simcast.emulator import DeviceManager, ToolPaths
from simcast.infra import AppConfig, BootTimeoutError, ConfigError, ConfigManager, setup_logger
from simcast.server import FrameServer
from simcast.types import Platform
from simcast.window import WindowLocator


def parse_capture_target(text: str) -> tuple[str, Platform]:
    """解析 ``<device_id>:<platform>``。设备标识中可以包含冒号，以最后一个冒号分隔。"""
    device_id, sep, platform = text.rpartition(":")
    if not sep or not device_id:
        raise argparse.ArgumentTypeError(f"采集目标格式应为 <device_id>:<platform>，收到 {text!r}")
    try:
        return device_id, Platform(platform)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML 配置文件路径")

    parser = argparse.ArgumentParser(prog="simcast", description="iOS 模拟器 / Android 模拟器控制与画面采集")
    sub = parser.add_subparsers(dest="command", required=True)

    devices = sub.add_parser("devices", parents=[common], help="列出可用设备（JSON）")
    devices.add_argument("--platform", type=Platform, default=None)

    for name, help_text in (("boot", "启动设备"), ("shutdown", "关闭设备")):
        cmd = sub.add_parser(name, parents=[common], help=help_text)
        cmd.add_argument("device_id")
        cmd.add_argument("--platform", type=Platform, required=True)

    shot = sub.add_parser("screenshot", parents=[common], help="整屏截图保存到文件")
    shot.add_argument("device_id")
    shot.add_argument("--platform", type=Platform, required=True)
    shot.add_argument("-o", "--output", default="screenshot.png", help="输出 PNG 路径")

    serve = sub.add_parser("serve", parents=[common], help="启动采集与帧分发服务")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument(
        "--capture",
        type=parse_capture_target,
        action="append",
        default=[],
        metavar="ID:PLATFORM",
        help="启动时开始采集的设备，可重复",
    )
    return parser


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


# ── 子命令 ──


async def _cmd_devices(devices: DeviceManager, platform: Platform | None) -> int:
    found = await devices.list_devices(platform) if platform else await devices.list_all()
    _print_json([d.to_dict() for d in found])
    return 0


async def _cmd_boot(devices: DeviceManager, device_id: str, platform: Platform) -> int:
    try:
        result = await devices.boot(device_id, platform)
    except BootTimeoutError as exc:
        logger.error("{}", exc)
        return 1
    _print_json(result.to_dict())
    return 0 if result.success else 1


async def _cmd_shutdown(devices: DeviceManager, device_id: str, platform: Platform) -> int:
    result = await devices.shutdown(device_id, platform)
    _print_json(result.to_dict())
    return 0 if result.success else 1


async def _cmd_screenshot(
    devices: DeviceManager, device_id: str, platform: Platform, output: str
) -> int:
    result = await devices.screenshot(device_id, platform, output)
    _print_json(result.to_dict())
    return 0 if result.success else 1


async def _cmd_serve(
    config: AppConfig,
    devices: DeviceManager,
    tools: ToolPaths,
    targets: Sequence[tuple[str, Platform]],
) -> int:
    capture = CaptureService(config, devices, WindowLocator(config.window), FrameBus(), tools)
    server = FrameServer(capture, config.server)
    await server.start()
    try:
        for device_id, platform in targets:
            result = await capture.start(device_id, platform)
            if not result.success:
                logger.error("[Capture] {} 采集启动失败: {}", device_id, result.error)
        # 运行直到被中断
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await capture.shutdown()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = ConfigManager.load(args.config)
    except ConfigError as exc:
        logger.error("{}", exc)
        return 2
    if args.command == "serve" and (args.host or args.port):
        server = config.server.model_copy(
            update={k: v for k, v in (("host", args.host), ("port", args.port)) if v}
        )
        config = config.model_copy(update={"server": server})

    log_dir = config.log.dir if args.command == "serve" else None
    setup_logger(
        log_dir=log_dir,
        level=config.log.level,
        show_frame_detail=config.log.show_frame_detail,
    )

    tools = ToolPaths.resolve(config)
    devices = DeviceManager.from_config(config, tools)

    match args.command:
        case "devices":
            coro = _cmd_devices(devices, args.platform)
        case "boot":
            coro = _cmd_boot(devices, args.device_id, args.platform)
        case "shutdown":
            coro = _cmd_shutdown(devices, args.device_id, args.platform)
        case "screenshot":
            coro = _cmd_screenshot(devices, args.device_id, args.platform, args.output)
        case "serve":
            coro = _cmd_serve(config, devices, tools, args.capture)

    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        logger.info("已退出")
        return 0


if __name__ == "__main__":
    sys.exit(main())
