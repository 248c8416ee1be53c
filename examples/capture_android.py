import asyncio

from simcast.capture import CaptureService
from simcast.emulator import DeviceManager, ToolPaths
from simcast.infra import ConfigManager, setup_logger
from simcast.server import FrameServer
from simcast.window import WindowLocator


async def main() -> None:
    config = ConfigManager.load('./simcast.yaml')
    setup_logger(level=config.log.level)
    tools = ToolPaths.resolve(config)
    devices = DeviceManager.from_config(config, tools)

    result = await devices.boot('Pixel_7_API_34', 'android')  # AVD 名称，可用 `simcast devices` 查看
    if not result.success:
        print(result.error)
        return

    capture = CaptureService(config, devices, WindowLocator(config.window), tools=tools)
    server = FrameServer(capture, config.server)
    await server.start()
    await capture.start(result.serial, 'android')
    # 浏览器打开 http://127.0.0.1:8765/stream/<serial> 查看实时画面

    try:
        await asyncio.sleep(60)
    finally:
        await server.stop()
        await capture.shutdown()


asyncio.run(main())
