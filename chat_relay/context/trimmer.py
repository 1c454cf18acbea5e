"""把对话裁剪到 token 预算之内。

从最新的消息往前保留，遇到第一条会超出预算的消息即停止，
因此结果总是输入的一个连续后缀，顺序不变。
"""
from __future__ import annotations

from typing import List, Optional, Sequence

from chat_relay.context.tokenizer import TokenCounter, get_token_counter
from chat_relay.domain.models import ChatMessage

# 每条消息的协议开销
MESSAGE_OVERHEAD_TOKENS = 4


def message_cost(message: ChatMessage, counter: TokenCounter) -> int:
    return counter(message.content) + MESSAGE_OVERHEAD_TOKENS


def trim_messages_to_fit(
    messages: Sequence[ChatMessage],
    model: str,
    max_tokens: int,
    counter: Optional[TokenCounter] = None,
) -> List[ChatMessage]:
    """返回总开销不超过 max_tokens 的最长后缀。

    counter 不为空时代替按 model 选出的 tiktoken 编码；
    最新一条消息单独就超出预算时返回空列表。
    """
    count = counter or get_token_counter(model)
    total = 0
    start = len(messages)
    for i in range(len(messages) - 1, -1, -1):
        cost = message_cost(messages[i], count)
        if total + cost > max_tokens:
            break
        total += cost
        start = i
    return list(messages[start:])
