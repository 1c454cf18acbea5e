from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Protocol

from .models import Role, ChatMessage


@dataclass
class Thread:
    id: str
    title: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class MessageRecord:
    id: str
    thread_id: str
    role: Role
    content: str
    created_at: datetime
    updated_at: datetime

    def to_chat_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chatThreadId": self.thread_id,
            "role": self.role,
            "content": self.content,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class ThreadStore(Protocol):
    """会话持久化协议。所有方法都是协程，不阻塞事件循环。"""

    async def create_thread(self, title: Optional[str] = None) -> Thread:
        ...

    async def get_thread(self, thread_id: str) -> Thread:
        ...

    async def list_threads(self) -> List[Thread]:
        ...

    async def add_message(self, thread_id: str, role: Role, content: str) -> MessageRecord:
        ...

    async def list_messages(self, thread_id: str) -> List[MessageRecord]:
        ...

    async def set_title_if_unset(self, thread_id: str, title: str) -> Thread:
        ...


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")
