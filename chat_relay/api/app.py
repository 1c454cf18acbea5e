"""HTTP 接口（FastAPI）。

路由：
- GET  /chat               列出会话
- GET  /chat/{thread_id}   会话详情与消息
- POST /chat               新建会话
- PUT  /chat/{thread_id}   发送用户消息，以 text/event-stream 返回回复
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from chat_relay.api.service import ChatService, get_default_service
from chat_relay.config.settings import settings
from chat_relay.domain.exceptions import BusinessError
from chat_relay.infrastructure.logging.logger import logger


class CreateThreadBody(BaseModel):
    title: Optional[str] = Field(default=None, description="可选的初始标题")


class TurnBody(BaseModel):
    # 缺失或为 null 时交给业务层校验，统一返回 {"code","message"}
    content: Optional[str] = Field(default=None, description="用户本轮输入")


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def create_app(service: Optional[ChatService] = None, static_dir: Optional[str] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.chat_service.warm_up()
        yield
        # 关闭前等待进行中的对话写完助手消息
        await app.state.chat_service.drain()

    app = FastAPI(title="chat-relay", lifespan=lifespan)
    app.state.chat_service = service or get_default_service()

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError):
        logger.warning(
            f"Request failed: {exc.message}",
            extra={"extra": {"path": request.url.path, "code": exc.code, **exc.extra}},
        )
        return JSONResponse(
            status_code=exc.http_status,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        logger.warning(
            f"Invalid request body: {message}",
            extra={"extra": {"path": request.url.path, "code": "INVALID_REQUEST"}},
        )
        return JSONResponse(status_code=400, content={"code": "INVALID_REQUEST", "message": message})

    @app.get("/chat")
    async def list_threads(svc: ChatService = Depends(get_chat_service)):
        return {"chatThreads": await svc.list_threads()}

    @app.get("/chat/{thread_id}")
    async def get_thread(thread_id: str, svc: ChatService = Depends(get_chat_service)):
        return await svc.get_thread(thread_id)

    @app.post("/chat")
    async def create_thread(body: CreateThreadBody, svc: ChatService = Depends(get_chat_service)):
        return {"chatThread": await svc.create_thread(title=body.title)}

    @app.put("/chat/{thread_id}")
    async def send_message(thread_id: str, body: TurnBody, svc: ChatService = Depends(get_chat_service)):
        channel = await svc.start_turn(thread_id, body.content)
        return StreamingResponse(channel.sse(), media_type="text/event-stream", headers=SSE_HEADERS)

    static_path = Path(static_dir or settings.static_dir)
    if static_path.is_dir():
        app.mount("/", StaticFiles(directory=str(static_path), html=True), name="static")

    return app
