"""启动 HTTP 服务：python -m chat_relay 或 chat-relay 命令。"""

import uvicorn

from chat_relay.config.settings import settings


def main() -> None:
    uvicorn.run(
        "chat_relay.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
