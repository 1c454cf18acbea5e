"""面向调用方的服务端推送通道。

生产者（会话任务）通过 send() 写入事件，消费者（SSE 响应）通过 sse() 读取。
消费者断开后 send() 变为空操作，生产者无需感知连接状态。
"""

import asyncio
import json
from typing import Any, AsyncIterator, Dict

_CLOSE = object()


class EventChannel:
    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def send(self, event: Dict[str, Any]) -> bool:
        """写入一个事件；通道已关闭或消费者已断开时返回 False。"""

        if self._closed or self._detached:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSE)

    def detach(self) -> None:
        """标记消费者已离开，之后的写入全部丢弃。"""

        self._detached = True

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSE:
                    return
                yield item
        finally:
            self.detach()

    async def sse(self) -> AsyncIterator[str]:
        events = self.events()
        try:
            async for event in events:
                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
        finally:
            # 响应被提前关闭时内层生成器不会自动结束，这里显式关闭以立即断开
            await events.aclose()
