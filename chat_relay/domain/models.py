"""统一的对话与补全数据模型。

本模块定义了会话流水线各层之间共享的标准数据结构：

- ChatMessage: 发给模型的一条消息（system/user/assistant）。
- CompletionRequest: 发给补全接口的完整请求，每次调用新建。
- CompletionResult: 非流式调用解析后的统一结果。
- ChatStreamChunk: 流式调用中解码出的一次增量。

Provider 适配器只依赖这些模型，并负责在厂商 JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, List


# 消息角色类型（与 OpenAI chat/completions 的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """一条模型可见的消息，只包含角色与纯文本内容。"""

    role: Role
    content: str

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class CompletionRequest:
    """一次补全请求。

    - model: 厂商模型名，例如 "gpt-4o"。
    - messages: 已裁剪、按时间顺序排列的消息列表（含系统指令）。
    - stream: 是否使用流式协议。
    """

    model: str
    messages: List[ChatMessage]
    stream: bool = False

    def to_payload(self) -> dict:
        payload = {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
        }
        if self.stream:
            payload["stream"] = True
        return payload


@dataclass
class ChatUsage:
    """补全接口返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class CompletionResult:
    """一次非流式调用的最终结果。

    - model: 请求时的模型名。
    - content: 第一个候选回答的文本。
    - finish_reason: 结束原因（stop/length/...）。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试。
    """

    model: str
    content: str
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = field(default=None, repr=False)


@dataclass
class ChatStreamChunk:
    """流式调用的一次增量。

    done=True 仅在收到结束标记（sentinel）时出现，此时 delta 为空。
    传输连接提前关闭时不会产生 done 增量。
    """

    delta: str = ""
    done: bool = False
    finish_reason: Optional[str] = None
