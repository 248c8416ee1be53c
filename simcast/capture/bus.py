"""帧事件发布 / 订阅通道。

采集循环通过 :meth:`FrameBus.publish` 同步投递事件，永不阻塞：
每个订阅者拥有独立的有界队列，队列满时丢弃最旧的一帧，
慢消费者或无人消费都不会拖慢采集。

使用方式::

    bus = FrameBus()
    sub = bus.subscribe("emulator-5554")
    async for event in sub:
        ...
    sub.close()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from simcast.types import Platform


@dataclass(frozen=True, slots=True)
class FrameEvent:
    """一次成功采集产生的帧事件。

    Attributes
    ----------
    device_id:
        设备标识。
    platform:
        设备平台。
    data:
        完整的 PNG 字节。
    sequence:
        会话内严格递增的帧序号，从 1 开始，失败的采集不占用序号。
    timestamp:
        采集时刻（Unix 时间戳，秒）。
    """

    device_id: str
    platform: Platform
    data: bytes
    sequence: int
    timestamp: float


class Subscription:
    """单个订阅者。可作为异步迭代器使用，关闭后迭代结束。"""

    def __init__(self, bus: FrameBus, device_id: str | None, maxsize: int) -> None:
        self.device_id = device_id
        self.dropped = 0
        self._bus = bus
        self._queue: asyncio.Queue[FrameEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def matches(self, event: FrameEvent) -> bool:
        return self.device_id is None or self.device_id == event.device_id

    def offer(self, event: FrameEvent) -> None:
        """非阻塞投递；队列满时丢弃最旧的事件。"""
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> FrameEvent | None:
        """等待下一帧；订阅关闭后返回 None。"""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """取消订阅并唤醒正在等待的消费者。可重复调用。"""
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self)
        # 清空后放入结束标记，保证等待中的 get() 能返回
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> FrameEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class FrameBus:
    """按设备标识过滤的帧事件扇出通道。"""

    def __init__(self, maxsize: int = 8) -> None:
        self._maxsize = maxsize
        self._subscribers: list[Subscription] = []

    def subscribe(self, device_id: str | None = None, maxsize: int | None = None) -> Subscription:
        """订阅指定设备（``None`` 表示全部设备）的帧事件。"""
        sub = Subscription(self, device_id, maxsize or self._maxsize)
        self._subscribers.append(sub)
        logger.debug("[Bus] 新订阅 device={} 当前订阅数={}", device_id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """移除订阅者；未订阅时静默返回。"""
        try:
            self._subscribers.remove(sub)
        except ValueError:
            return
        if not sub.closed:
            sub.close()
        logger.debug("[Bus] 取消订阅 device={} 当前订阅数={}", sub.device_id, len(self._subscribers))

    def publish(self, event: FrameEvent) -> int:
        """投递事件给所有匹配的订阅者，返回投递数量。"""
        delivered = 0
        for sub in list(self._subscribers):
            if sub.matches(event):
                sub.offer(event)
                delivered += 1
        return delivered

    def subscriber_count(self, device_id: str | None = None) -> int:
        if device_id is None:
            return len(self._subscribers)
        return sum(1 for sub in self._subscribers if sub.device_id == device_id)
