"""对外服务模块。

为 HTTP 层提供简化的协程接口：会话的增删查，以及启动一轮流式对话。
每轮对话在独立的 asyncio 任务中运行，调用方断开只影响推送，
不影响上游生成与持久化。
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from chat_relay.config.settings import settings
from chat_relay.domain.conversation import ThreadStore
from chat_relay.infrastructure.logging.logger import logger
from chat_relay.infrastructure.storage.json_store import JsonThreadStore
from chat_relay.providers import create_provider
from chat_relay.session.conversation import ConversationSession, PreparedTurn
from chat_relay.streaming.channel import EventChannel


class ChatService:
    def __init__(self, store: ThreadStore, session: ConversationSession):
        self._store = store
        self._session = session
        self._inflight: Set["asyncio.Task[None]"] = set()

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def list_threads(self) -> list[Dict[str, Any]]:
        """列出所有会话，最近更新的在前。"""
        threads = await self._store.list_threads()
        return [t.to_dict() for t in threads]

    async def get_thread(self, thread_id: str) -> Dict[str, Any]:
        """获取会话及其全部消息（按创建时间升序）。"""
        thread = await self._store.get_thread(thread_id)
        messages = await self._store.list_messages(thread_id)
        return {
            "chatThread": thread.to_dict(),
            "chatMessages": [m.to_dict() for m in messages],
        }

    async def create_thread(self, title: Optional[str] = None) -> Dict[str, Any]:
        thread = await self._store.create_thread(title=title)
        return thread.to_dict()

    async def start_turn(self, thread_id: str, content: str) -> EventChannel:
        """完成流式之前的全部步骤，返回调用方要读取的推送通道。

        Raises:
            chat_relay.domain.exceptions 中定义的业务异常（流式开始之前）。
        """
        prepared = await self._session.open_turn(thread_id, content)
        channel = EventChannel()
        task = asyncio.create_task(self._run_turn(prepared, channel))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return channel

    async def warm_up(self) -> None:
        """启动时在线程中加载分词编码；失败只记录警告，首轮对话时会再次加载。"""
        try:
            await asyncio.to_thread(self._session.warm_up)
        except Exception as e:
            logger.warning(f"Tokenizer warm-up failed: {e}", extra={"extra": {"error": str(e)}})

    async def drain(self) -> None:
        """等待所有进行中的对话结束（用于关闭服务前）。"""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_turn(self, prepared: PreparedTurn, channel: EventChannel) -> None:
        try:
            await self._session.run_turn(prepared, channel)
        except Exception as e:
            # 流已开始，无法再返回错误响应，只能记录并关闭通道
            logger.error(
                f"Turn failed after streaming started: {e}",
                exc_info=True,
                extra={"extra": dict(prepared.log_ctx, error=str(e))},
            )
        finally:
            channel.close()


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        store = JsonThreadStore(root=settings.storage_root)
        session = ConversationSession(store=store, client=create_provider())
        _service = ChatService(store=store, session=session)
        logger.log(
            logging.INFO,
            "Chat service ready",
            extra={"extra": {"storage_root": settings.storage_root, "model": session.config.model}},
        )
    return _service
