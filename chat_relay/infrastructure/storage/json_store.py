import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from chat_relay.config.settings import settings
from chat_relay.domain.conversation import ThreadStore, Thread, MessageRecord
from chat_relay.domain.exceptions import BusinessError, PersistenceError, ValidationError
from chat_relay.domain.models import Role


class JsonThreadStore(ThreadStore):
    """基于 JSON 文件的会话存储。

    每个会话一个目录：meta.json 原子替换写入，messages.jsonl 只追加。
    文件 I/O 通过 asyncio.to_thread 执行；写操作在同一个锁下串行，
    保证 meta.json 的读改写不会交错。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._thread_root = self._root / "threads"
        self._thread_root.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()

    async def create_thread(self, title: Optional[str] = None) -> Thread:
        async with self._write_lock:
            return await asyncio.to_thread(self._create_thread_sync, title)

    async def get_thread(self, thread_id: str) -> Thread:
        return await asyncio.to_thread(self._read_meta, thread_id)

    async def list_threads(self) -> List[Thread]:
        return await asyncio.to_thread(self._list_threads_sync)

    async def add_message(self, thread_id: str, role: Role, content: str) -> MessageRecord:
        async with self._write_lock:
            return await asyncio.to_thread(self._add_message_sync, thread_id, role, content)

    async def list_messages(self, thread_id: str) -> List[MessageRecord]:
        return await asyncio.to_thread(self._list_messages_sync, thread_id)

    async def set_title_if_unset(self, thread_id: str, title: str) -> Thread:
        """仅当会话尚无标题时写入标题，返回最新的会话。"""
        async with self._write_lock:
            return await asyncio.to_thread(self._set_title_sync, thread_id, title)

    # ---- 同步实现 ----

    def _create_thread_sync(self, title: Optional[str]) -> Thread:
        tid = f"t-{uuid4().hex}"
        tdir = self._thread_root / tid
        now = datetime.now(timezone.utc)
        thread = Thread(id=tid, title=title or None, created_at=now, updated_at=now)
        try:
            tdir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))
        self._write_meta(tdir, thread)
        return thread

    def _list_threads_sync(self) -> List[Thread]:
        items: List[Thread] = []
        for tdir in self._thread_root.glob("*/"):
            meta_path = tdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_thread(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda t: t.updated_at, reverse=True)
        return items

    def _add_message_sync(self, thread_id: str, role: Role, content: str) -> MessageRecord:
        thread = self._read_meta(thread_id)
        tdir = self._thread_root / thread_id
        now = datetime.now(timezone.utc)
        message = MessageRecord(
            id=f"m-{uuid4().hex}",
            thread_id=thread_id,
            role=role,
            content=content,
            created_at=now,
            updated_at=now,
        )
        payload = {
            "id": message.id,
            "thread_id": message.thread_id,
            "role": message.role,
            "content": message.content,
            "created_at": _ts(message.created_at),
            "updated_at": _ts(message.updated_at),
        }
        try:
            with (tdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), thread_id=thread_id)
        thread.updated_at = now
        self._write_meta(tdir, thread)
        return message

    def _list_messages_sync(self, thread_id: str) -> List[MessageRecord]:
        msgs_path = self._thread_root / thread_id / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        try:
            lines = msgs_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), thread_id=thread_id)
        for line in lines:
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        # 追加顺序即创建顺序；时间戳相同的记录由稳定排序保持文件顺序
        items.sort(key=lambda m: m.created_at)
        return items

    def _set_title_sync(self, thread_id: str, title: str) -> Thread:
        thread = self._read_meta(thread_id)
        if thread.title:
            return thread
        thread.title = title
        thread.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._thread_root / thread_id, thread)
        return thread

    def _read_meta(self, thread_id: str) -> Thread:
        meta_path = self._thread_root / thread_id / "meta.json"
        if not meta_path.exists():
            raise ValidationError(code="THREAD_NOT_FOUND", message=f"Thread not found: {thread_id}", http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            return self._to_thread(data)
        except BusinessError:
            raise
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), thread_id=thread_id)

    def _write_meta(self, tdir: Path, thread: Thread) -> None:
        meta_path = tdir / "meta.json"
        tmp_path = tdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": thread.id,
            "title": thread.title,
            "created_at": _ts(thread.created_at),
            "updated_at": _ts(thread.updated_at),
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), thread_id=thread.id)

    @staticmethod
    def _to_thread(data: Dict[str, Any]) -> Thread:
        return Thread(
            id=data["id"],
            title=data.get("title") or None,
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data["updated_at"]),
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            thread_id=data["thread_id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data.get("updated_at") or data["created_at"]),
        )


def _ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
