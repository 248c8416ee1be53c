"""分发层 — 本地 HTTP 帧服务。"""

from simcast.server.frame_server import FrameServer, encode_part

__all__ = [
    "FrameServer",
    "encode_part",
]
