"""上下文裁剪：按模型的 tokenizer 把历史消息裁剪到 token 预算之内。"""

from chat_relay.context.tokenizer import TokenCounter, get_token_counter
from chat_relay.context.trimmer import MESSAGE_OVERHEAD_TOKENS, trim_messages_to_fit

__all__ = ["TokenCounter", "get_token_counter", "MESSAGE_OVERHEAD_TOKENS", "trim_messages_to_fit"]
