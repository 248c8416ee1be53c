"""测试 HTTP 帧分发服务。"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer, unused_port

from simcast.capture import CaptureService, FrameBus, FrameEvent
from simcast.infra.config import ServerConfig
from simcast.server import FrameServer, encode_part
from simcast.types import Platform


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("等待条件超时")
        await asyncio.sleep(0.005)


def _event(data: bytes, sequence: int, device_id: str = "emulator-5554") -> FrameEvent:
    return FrameEvent(device_id, Platform.android, data, sequence, 0.0)


FAST_CHECK = ServerConfig(disconnect_check_interval=0.02)


@pytest.fixture
def capture(png_bytes):
    service = MagicMock(spec=CaptureService)
    service.bus = FrameBus()
    service.active_devices.return_value = ["emulator-5554"]
    service.get_current_frame.side_effect = (
        lambda device_id: png_bytes if device_id == "emulator-5554" else None
    )
    return service


def test_encode_part():
    assert encode_part(b"abc") == (
        b"--frame\r\nContent-Type: image/png\r\nContent-Length: 3\r\n\r\nabc\r\n"
    )


class TestRoutes:
    """测试单次请求路由。"""

    @pytest.mark.asyncio
    async def test_devices(self, capture):
        async with TestClient(TestServer(FrameServer(capture).build_app())) as client:
            resp = await client.get("/devices")
            assert resp.status == 200
            assert resp.content_type == "application/json"
            assert await resp.json() == ["emulator-5554"]

    @pytest.mark.asyncio
    async def test_frame(self, capture, png_bytes):
        async with TestClient(TestServer(FrameServer(capture).build_app())) as client:
            resp = await client.get("/frame/emulator-5554")
            assert resp.status == 200
            assert resp.content_type == "image/png"
            assert resp.headers["Cache-Control"] == "no-cache"
            assert await resp.read() == png_bytes

    @pytest.mark.asyncio
    async def test_frame_missing(self, capture):
        async with TestClient(TestServer(FrameServer(capture).build_app())) as client:
            resp = await client.get("/frame/unknown")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_unknown_path(self, capture):
        async with TestClient(TestServer(FrameServer(capture).build_app())) as client:
            resp = await client.get("/nothing")
            assert resp.status == 404


class TestStream:
    """测试 multipart 帧流。"""

    @pytest.mark.asyncio
    async def test_two_clients_receive_same_frames(self, capture):
        server = FrameServer(capture, FAST_CHECK)
        frames = [b"\x89PNG-one", b"\x89PNG-two"]
        async with TestClient(TestServer(server.build_app())) as client:
            r1 = await client.get("/stream/emulator-5554")
            r2 = await client.get("/stream/emulator-5554")
            assert r1.status == 200
            assert r1.headers["Content-Type"] == "multipart/x-mixed-replace; boundary=frame"
            await _until(lambda: capture.bus.subscriber_count("emulator-5554") == 2)

            # 其他设备的帧不会出现在流中
            capture.bus.publish(_event(b"\x89PNG-other", 1, device_id="other"))
            for seq, data in enumerate(frames, start=1):
                capture.bus.publish(_event(data, seq))

            expected = b"\r\n" + b"".join(encode_part(f) for f in frames)
            for resp in (r1, r2):
                body = await asyncio.wait_for(resp.content.readexactly(len(expected)), 2.0)
                assert body == expected
                resp.close()

            await _until(lambda: server.stream_count == 0)
        assert capture.bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_waits_for_session(self, capture):
        server = FrameServer(capture, FAST_CHECK)
        async with TestClient(TestServer(server.build_app())) as client:
            resp = await client.get("/stream/not-started-yet")
            assert resp.status == 200
            await _until(lambda: capture.bus.subscriber_count("not-started-yet") == 1)
            capture.bus.publish(_event(b"\x89PNG-late", 1, device_id="not-started-yet"))
            expected = b"\r\n" + encode_part(b"\x89PNG-late")
            assert await asyncio.wait_for(resp.content.readexactly(len(expected)), 2.0) == expected
            resp.close()
            await _until(lambda: server.stream_count == 0)

    @pytest.mark.asyncio
    async def test_idle_clients_released_on_disconnect(self, capture):
        """没有任何帧投递时，断开的客户端也会被释放。"""
        port = unused_port()
        server = FrameServer(
            capture, ServerConfig(port=port, disconnect_check_interval=0.02)
        )
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                responses = []
                for _ in range(5):
                    resp = await session.get(f"http://127.0.0.1:{port}/stream/idle-device")
                    assert await resp.content.readexactly(2) == b"\r\n"
                    responses.append(resp)
                await _until(lambda: server.stream_count == 5)

                for resp in responses:
                    resp.close()
                await _until(
                    lambda: server.stream_count == 0
                    and capture.bus.subscriber_count("idle-device") == 0
                )
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_stream_queue_size_from_config(self, capture):
        server = FrameServer(
            capture, ServerConfig(stream_queue_size=2, disconnect_check_interval=0.02)
        )
        async with TestClient(TestServer(server.build_app())) as client:
            resp = await client.get("/stream/emulator-5554")
            await _until(lambda: server.stream_count == 1)
            (sub,) = server._streams
            assert sub.maxsize == 2
            resp.close()


class TestLifecycle:
    """测试服务启停。"""

    @pytest.mark.asyncio
    async def test_start_stop_closes_streams(self, capture):
        port = unused_port()
        server = FrameServer(capture, ServerConfig(port=port))
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                resp = await session.get(f"http://127.0.0.1:{port}/stream/emulator-5554")
                assert resp.status == 200
                assert await resp.content.readexactly(2) == b"\r\n"
                await _until(lambda: server.stream_count == 1)

                await server.stop()
                assert server.stream_count == 0
                assert capture.bus.subscriber_count() == 0
                # 服务端结束响应后客户端读到 EOF
                try:
                    rest = await asyncio.wait_for(resp.content.read(), 2.0)
                except aiohttp.ClientPayloadError:
                    rest = b""
                assert rest == b""
                resp.close()
        finally:
            await server.stop()
