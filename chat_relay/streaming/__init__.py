"""流式转发：调用方推送通道 (channel) 与 token 转发状态机 (relay)。"""

from chat_relay.streaming.channel import EventChannel
from chat_relay.streaming.relay import RelayState, StreamRelay

__all__ = ["EventChannel", "RelayState", "StreamRelay"]
