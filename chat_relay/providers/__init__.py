"""补全接口集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 解码流式协议帧 (sse)。
- 提供具体实现 (openai_client)。
"""

from typing import Optional

from chat_relay.config.settings import settings
from chat_relay.providers.base import CompletionClient
from chat_relay.providers.openai_client import OpenAIClient
from chat_relay.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None, cfg=None) -> CompletionClient:
    """根据名称创建 Provider 实例，默认使用 openai。"""

    provider_cfg = get_provider_config(name or "openai")
    if provider_cfg.name == "openai":
        return OpenAIClient(cfg or settings)
    raise KeyError(f"No client for provider: {provider_cfg.name!r}")
