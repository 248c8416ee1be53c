"""本地 HTTP 帧分发服务。

路由
----
- ``GET /devices``              当前采集中的设备标识列表（JSON）
- ``GET /frame/{device_id}``    最近一帧 PNG；没有画面时 404
- ``GET /stream/{device_id}``   ``multipart/x-mixed-replace`` 连续帧流，
  每收到一个帧事件写出一个 part，直到客户端断开；
  没有新帧时按 ``disconnect_check_interval`` 检查连接，断开的客户端会被及时释放

服务只读采集服务的状态，不持有会话；流在会话出现之前接入时会一直等待。

使用方式::

    server = FrameServer(capture, config.server)
    await server.start()
    ...
    await server.stop()
"""

from __future__ import annotations

import asyncio

from aiohttp import web
from loguru import logger

from simcast.capture import CaptureService, Subscription
from simcast.infra.config import ServerConfig

BOUNDARY = "frame"


def encode_part(data: bytes) -> bytes:
    """将一帧 PNG 编码为 multipart 的一个 part。"""
    header = (
        f"--{BOUNDARY}\r\n"
        "Content-Type: image/png\r\n"
        f"Content-Length: {len(data)}\r\n"
        "\r\n"
    ).encode("ascii")
    return header + data + b"\r\n"


class FrameServer:
    """基于 aiohttp 的帧分发服务。

    Parameters
    ----------
    capture:
        采集服务，提供当前帧、活动设备与帧事件通道。
    config:
        监听地址、流队列容量与断开检查间隔。
    """

    def __init__(self, capture: CaptureService, config: ServerConfig | None = None) -> None:
        self._capture = capture
        self._config = config or ServerConfig()
        self._streams: set[Subscription] = set()
        self._runner: web.AppRunner | None = None

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/devices", self.handle_devices)
        app.router.add_get("/frame/{device_id}", self.handle_frame)
        app.router.add_get("/stream/{device_id}", self.handle_stream)
        return app

    # ── 路由处理 ──

    async def handle_devices(self, request: web.Request) -> web.Response:
        return web.json_response(self._capture.active_devices())

    async def handle_frame(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        frame = self._capture.get_current_frame(device_id)
        if frame is None:
            return web.Response(status=404, text=f"设备 {device_id} 暂无画面")
        return web.Response(
            body=frame,
            content_type="image/png",
            headers={"Cache-Control": "no-cache"},
        )

    async def handle_stream(self, request: web.Request) -> web.StreamResponse:
        device_id = request.match_info["device_id"]
        response = web.StreamResponse(
            headers={
                "Content-Type": f"multipart/x-mixed-replace; boundary={BOUNDARY}",
                "Cache-Control": "no-cache",
            }
        )
        sub = self._capture.bus.subscribe(device_id, maxsize=self._config.stream_queue_size)
        self._streams.add(sub)
        logger.info("[Server] 客户端 {} 接入 {} 的帧流", request.remote, device_id)
        try:
            await response.prepare(request)
            # 首个分隔符前的 CRLF，使响应头在第一帧之前就发出
            await response.write(b"\r\n")
            while True:
                try:
                    event = await asyncio.wait_for(sub.get(), self._config.disconnect_check_interval)
                except TimeoutError:
                    # 空闲时由传输层状态判断客户端是否已断开
                    transport = request.transport
                    if transport is None or transport.is_closing():
                        logger.debug("[Server] 客户端 {} 已断开", request.remote)
                        break
                    continue
                if event is None:
                    break
                await response.write(encode_part(event.data))
        except ConnectionResetError:
            logger.debug("[Server] 客户端 {} 已断开", request.remote)
        finally:
            self._streams.discard(sub)
            sub.close()
            logger.info("[Server] {} 的帧流已结束 (丢弃 {} 帧)", device_id, sub.dropped)
        return response

    # ── 生命周期 ──

    async def start(self) -> None:
        """绑定 ``host:port`` 并开始服务。"""
        if self._runner is not None:
            return
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        logger.info("[Server] 帧分发服务已启动: http://{}:{}", self._config.host, self._config.port)

    async def stop(self) -> None:
        """关闭所有帧流并释放监听端口。"""
        for sub in list(self._streams):
            sub.close()
        self._streams.clear()
        # 让流处理函数在 cleanup 之前自然结束
        await asyncio.sleep(0)
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("[Server] 帧分发服务已停止")
