"""Chat Relay 顶层包。

把多轮对话转发给远端补全接口，以 SSE 逐 token 推回调用方，
持久化对话记录，并在首轮完成后生成简短的会话标题。
包括配置加载、领域模型、Provider 适配、上下文裁剪、
流式转发、会话编排与持久化存储等能力。
"""

from chat_relay.context.trimmer import trim_messages_to_fit
from chat_relay.session.conversation import ConversationConfig, ConversationSession

__all__ = ["ConversationConfig", "ConversationSession", "trim_messages_to_fit"]
