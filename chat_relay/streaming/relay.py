"""把上游 token 流转发给调用方，同时缓存完整文本。

状态机：IDLE → STREAMING → COMPLETED，另有终态 ERRORED。
只有 COMPLETED 允许发送最终事件；其余结束路径只关闭通道，
因为流一旦开始，协议里就没有错误帧。
"""

import logging
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Any

from chat_relay.domain.exceptions import UpstreamError
from chat_relay.domain.models import ChatStreamChunk
from chat_relay.infrastructure.logging.logger import log_event
from chat_relay.streaming.channel import EventChannel


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"


class StreamRelay:
    def __init__(self, channel: EventChannel, log_ctx: Optional[Dict[str, Any]] = None):
        self._channel = channel
        self._log_ctx = dict(log_ctx or {})
        self._pieces: List[str] = []
        self.state = RelayState.IDLE
        self.truncated = False
        self.error: Optional[UpstreamError] = None

    @property
    def text(self) -> str:
        return "".join(self._pieces)

    @property
    def fragment_count(self) -> int:
        return len(self._pieces)

    async def consume(
        self,
        stream: AsyncIterator[ChatStreamChunk],
        first: Optional[ChatStreamChunk] = None,
    ) -> RelayState:
        """消费整个上游流，返回结束时的状态。

        first 为调用方已经预取的第一个增量（用于在建立 SSE 之前确认上游可用）。
        """

        try:
            if first is not None and self._handle(first):
                return self.state
            async for chunk in stream:
                if self._handle(chunk):
                    return self.state
            self.truncated = True
            self._fail(None)
        except UpstreamError as e:
            self._fail(e)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return self.state

    def finish(self, payload: Dict[str, Any]) -> None:
        """发送唯一一个最终事件并关闭通道。"""

        if self.state is not RelayState.COMPLETED:
            raise RuntimeError(f"Cannot finish relay in state {self.state.value}")
        self._channel.send(payload)
        self._channel.close()

    def abort(self) -> None:
        if self.state is not RelayState.COMPLETED:
            self.state = RelayState.ERRORED
        self._channel.close()

    def _handle(self, chunk: ChatStreamChunk) -> bool:
        if self.state is RelayState.IDLE:
            self.state = RelayState.STREAMING
        if chunk.done:
            self.state = RelayState.COMPLETED
            return True
        if chunk.delta:
            self._pieces.append(chunk.delta)
            self._channel.send({"token": chunk.delta})
        return False

    def _fail(self, error: Optional[UpstreamError]) -> None:
        self.state = RelayState.ERRORED
        self.error = error
        log_event(
            logging.WARNING,
            "Upstream stream ended without end-of-stream marker" if error is None else "Upstream stream failed",
            self._log_ctx,
            truncated=self.truncated,
            fragments=len(self._pieces),
            error=error.message if error else None,
            client_connected=not self._channel.detached,
        )
        self._channel.close()
