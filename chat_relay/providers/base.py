"""Provider 抽象接口。

会话流水线不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 CompletionClient（如 OpenAIClient）。
- 负责：将 CompletionRequest 转成具体 API 请求，并把响应解析为统一模型。
"""

from typing import AsyncIterator, Protocol
from chat_relay.domain.models import ChatStreamChunk, CompletionRequest, CompletionResult


class CompletionClient(Protocol):
    """补全客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - complete(req): 一次非流式调用，返回 CompletionResult。
    - stream_complete(req): 一次流式调用，逐个产出内容增量，
      以 done=True 的增量表示收到结束标记。
    """

    name: str

    async def complete(self, req: CompletionRequest) -> CompletionResult:
        ...

    def stream_complete(self, req: CompletionRequest) -> AsyncIterator[ChatStreamChunk]:
        ...
