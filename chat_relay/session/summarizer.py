"""会话标题生成。

首轮对话完成后，用更便宜的模型和更小的 token 预算生成 3-8 个词的标题。
标题只是展示用途：任何失败都只记录日志，会话保持无标题，本轮对话照常成功。
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from chat_relay.context.tokenizer import TokenCounter, get_token_counter
from chat_relay.context.trimmer import trim_messages_to_fit
from chat_relay.domain.conversation import Thread, ThreadStore
from chat_relay.domain.exceptions import PersistenceError, SummarizationError
from chat_relay.domain.models import ChatMessage, CompletionRequest
from chat_relay.infrastructure.logging.logger import log_event
from chat_relay.prompts import load_prompt
from chat_relay.providers.base import CompletionClient


class Summarizer:
    def __init__(
        self,
        store: ThreadStore,
        client: CompletionClient,
        model: str,
        budget_tokens: int,
        counter_factory: Callable[[str], TokenCounter] = get_token_counter,
    ):
        self._store = store
        self._client = client
        self._model = model
        self._budget_tokens = budget_tokens
        self._counter_factory = counter_factory

    async def summarize(
        self,
        thread: Thread,
        context_messages: List[ChatMessage],
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> Thread:
        """为无标题会话生成标题；已有标题时原样返回。"""

        if thread.title:
            return thread
        ctx = dict(log_ctx or {})
        ctx.setdefault("thread_id", thread.id)
        try:
            title = await self._generate_title(context_messages)
        except SummarizationError as e:
            log_event(logging.WARNING, "Thread summarization failed", ctx, code=e.code, error=e.message)
            return thread
        try:
            updated = await self._store.set_title_if_unset(thread.id, title)
        except PersistenceError as e:
            log_event(logging.WARNING, "Failed to store thread title", ctx, code=e.code, error=e.message)
            return thread
        log_event(logging.INFO, "Thread titled", ctx, title_length=len(updated.title or ""))
        return updated

    async def _generate_title(self, context_messages: List[ChatMessage]) -> str:
        try:
            trimmed = await asyncio.to_thread(self._trim, context_messages)
            req = CompletionRequest(
                model=self._model,
                messages=[ChatMessage(role="system", content=load_prompt("thread_title")), *trimmed],
            )
            result = await self._client.complete(req)
        except Exception as e:
            raise SummarizationError(code="SUMMARIZATION_FAILED", message=str(e) or type(e).__name__) from e
        title = (result.content or "").strip()
        if not title:
            raise SummarizationError(code="EMPTY_TITLE", message="Upstream returned an empty title")
        return title

    def _trim(self, context_messages: List[ChatMessage]) -> List[ChatMessage]:
        counter = self._counter_factory(self._model)
        return trim_messages_to_fit(context_messages, self._model, self._budget_tokens, counter)
