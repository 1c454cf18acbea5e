"""单轮对话编排。

一轮对话分两个阶段：

- open_turn：读取会话与历史、立即持久化用户消息、裁剪上下文、打开上游流并
  预取第一个增量。此阶段的任何失败都以普通错误抛出，调用方可以返回结构化错误。
- run_turn：把剩余的流转发给调用方，完成后持久化助手消息、按需生成标题，
  最后发送终止事件。此阶段开始后失败只能关闭通道。
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from uuid import uuid4

from chat_relay.config.settings import settings
from chat_relay.context.tokenizer import TokenCounter, get_token_counter
from chat_relay.context.trimmer import trim_messages_to_fit
from chat_relay.domain.conversation import MessageRecord, Thread, ThreadStore
from chat_relay.domain.exceptions import NetworkError, PersistenceError, ValidationError
from chat_relay.domain.models import ChatMessage, ChatStreamChunk, CompletionRequest
from chat_relay.infrastructure.logging.logger import log_event
from chat_relay.prompts import load_prompt
from chat_relay.providers.base import CompletionClient
from chat_relay.providers.registry import get_model_config
from chat_relay.session.summarizer import Summarizer
from chat_relay.streaming.channel import EventChannel
from chat_relay.streaming.relay import RelayState, StreamRelay

# 未登记模型且未显式配置时使用的预算
DEFAULT_STREAMING_BUDGET_TOKENS = 120000
DEFAULT_SUMMARY_BUDGET_TOKENS = 5000


@dataclass
class ConversationConfig:
    model: str
    streaming_budget_tokens: int
    summary_model: str
    summary_budget_tokens: int
    system_prompt: str

    @classmethod
    def from_settings(cls, cfg=settings) -> "ConversationConfig":
        """显式配置的预算优先，其次是模型登记的默认预算。"""
        return cls(
            model=cfg.model,
            streaming_budget_tokens=_budget_for(
                cfg.model, cfg.streaming_budget_tokens, DEFAULT_STREAMING_BUDGET_TOKENS
            ),
            summary_model=cfg.summary_model,
            summary_budget_tokens=_budget_for(
                cfg.summary_model, cfg.summary_budget_tokens, DEFAULT_SUMMARY_BUDGET_TOKENS
            ),
            system_prompt=cfg.system_prompt or load_prompt("system"),
        )


def _budget_for(model: str, configured: Optional[int], fallback: int) -> int:
    if configured is not None:
        return configured
    model_cfg = get_model_config(model)
    return model_cfg.context_budget if model_cfg else fallback


@dataclass
class PreparedTurn:
    """open_turn 的结果：已持久化的用户消息与已打开的上游流。"""

    thread: Thread
    user_message: MessageRecord
    working_messages: List[ChatMessage]
    model_input: List[ChatMessage]
    stream: AsyncIterator[ChatStreamChunk]
    first_chunk: ChatStreamChunk
    log_ctx: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)


@dataclass
class TurnOutcome:
    state: RelayState
    thread: Thread
    user_message: MessageRecord
    assistant_message: Optional[MessageRecord] = None
    text: str = ""


class ConversationSession:
    def __init__(
        self,
        store: ThreadStore,
        client: CompletionClient,
        config: Optional[ConversationConfig] = None,
        summarizer: Optional[Summarizer] = None,
        counter_factory: Callable[[str], TokenCounter] = get_token_counter,
    ):
        self._store = store
        self._client = client
        self._config = config or ConversationConfig.from_settings()
        self._counter_factory = counter_factory
        self._summarizer = summarizer or Summarizer(
            store=store,
            client=client,
            model=self._config.summary_model,
            budget_tokens=self._config.summary_budget_tokens,
            counter_factory=counter_factory,
        )

    @property
    def config(self) -> ConversationConfig:
        return self._config

    def build_model_input(self, working_messages: List[ChatMessage]) -> List[ChatMessage]:
        """系统指令 + 裁剪到主回复预算内的历史（以最新用户消息结尾）。"""

        counter = self._counter_factory(self._config.model)
        trimmed = trim_messages_to_fit(
            working_messages,
            self._config.model,
            self._config.streaming_budget_tokens,
            counter,
        )
        return [ChatMessage(role="system", content=self._config.system_prompt), *trimmed]

    def warm_up(self) -> None:
        """预先加载主回复与标题模型的分词编码（阻塞调用）。"""

        for model in (self._config.model, self._config.summary_model):
            self._counter_factory(model)("")

    async def open_turn(self, thread_id: str, content: str) -> PreparedTurn:
        """执行流式开始之前的全部步骤，并预取上游第一个增量。"""

        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "thread_id": thread_id}
        if not thread_id:
            raise ValidationError(code="MISSING_THREAD", message="chatThreadId is required")
        if content is None or not content.strip():
            raise ValidationError(code="EMPTY_CONTENT", message="content must not be empty")

        # 1. 读取会话与历史（按创建时间升序）
        thread = await self._store.get_thread(thread_id)
        history = await self._store.list_messages(thread_id)

        # 2. 新用户消息追加到内存工作列表
        working = [m.to_chat_message() for m in history]
        working.append(ChatMessage(role="user", content=content))

        # 3. 立即持久化用户消息，失败直接中止本轮
        user_message = await self._store.add_message(thread_id, "user", content)
        log_event(logging.INFO, "Stored user message", log_ctx, message_id=user_message.id)

        # 4. 构造模型输入
        # 分词是 CPU 密集操作（首次使用还要加载编码表），放到线程中执行
        model_input = await asyncio.to_thread(self.build_model_input, working)
        log_event(
            logging.INFO,
            "Calling provider (stream)",
            log_ctx,
            provider=self._client.name,
            model=self._config.model,
            history_count=len(working),
            message_count=len(model_input),
        )

        # 5. 打开上游流，拿到第一个增量才算流式开始
        stream = self._client.stream_complete(
            CompletionRequest(model=self._config.model, messages=model_input, stream=True)
        )
        try:
            first = await stream.__anext__()
        except StopAsyncIteration:
            raise NetworkError(
                code="UPSTREAM_CLOSED",
                message="Upstream closed the stream before sending any data",
                thread_id=thread_id,
            )
        return PreparedTurn(
            thread=thread,
            user_message=user_message,
            working_messages=working,
            model_input=model_input,
            stream=stream,
            first_chunk=first,
            log_ctx=log_ctx,
        )

    async def run_turn(self, prepared: PreparedTurn, channel: EventChannel) -> TurnOutcome:
        """转发流、持久化助手消息、生成标题并发送终止事件。"""

        log_ctx = prepared.log_ctx
        relay = StreamRelay(channel, log_ctx)
        try:
            state = await relay.consume(prepared.stream, first=prepared.first_chunk)
            outcome = TurnOutcome(state=state, thread=prepared.thread, user_message=prepared.user_message)
            if state is not RelayState.COMPLETED:
                # 上游截断或中途失败：丢弃已生成的部分文本，不写助手消息
                log_event(
                    logging.WARNING,
                    "Discarded partial assistant reply",
                    log_ctx,
                    partial_length=len(relay.text),
                    truncated=relay.truncated,
                )
                return outcome

            outcome.text = relay.text
            outcome.assistant_message = await self._persist_assistant(prepared, relay.text)
            outcome.thread = await self._summarizer.summarize(
                prepared.thread, prepared.working_messages, log_ctx
            )
            relay.finish(
                {
                    "done": True,
                    "thread": outcome.thread.to_dict(),
                    "userMessage": prepared.user_message.to_dict(),
                    "assistantMessage": (
                        outcome.assistant_message.to_dict() if outcome.assistant_message else None
                    ),
                }
            )
            log_event(
                logging.INFO,
                "Completed turn",
                log_ctx,
                elapsed_seconds=round(time.time() - prepared.started_at, 2),
                fragments=relay.fragment_count,
                user_message_id=prepared.user_message.id,
                assistant_message_id=outcome.assistant_message.id if outcome.assistant_message else None,
                client_connected=not channel.detached,
            )
            return outcome
        finally:
            relay.abort()

    async def _persist_assistant(self, prepared: PreparedTurn, text: str) -> Optional[MessageRecord]:
        """持久化助手消息；任务在终止事件之前等待完成，失败只记录日志。"""

        task = asyncio.create_task(self._store.add_message(prepared.thread.id, "assistant", text))
        try:
            record = await asyncio.shield(task)
        except PersistenceError as e:
            log_event(logging.ERROR, "Failed to store assistant message", prepared.log_ctx, code=e.code, error=e.message)
            return None
        log_event(logging.INFO, "Stored assistant message", prepared.log_ctx, message_id=record.id)
        return record
