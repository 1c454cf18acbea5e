"""会话编排：单轮对话流水线 (conversation) 与标题生成 (summarizer)。"""

from chat_relay.session.conversation import ConversationConfig, ConversationSession, PreparedTurn, TurnOutcome
from chat_relay.session.summarizer import Summarizer

__all__ = ["ConversationConfig", "ConversationSession", "PreparedTurn", "TurnOutcome", "Summarizer"]
