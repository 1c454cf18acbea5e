"""Provider 与模型配置。

集中登记已知模型的 tokenizer 编码与默认上下文预算：

- encoding：tiktoken 编码名，tiktoken 自身不认识该模型时用于计数。
- context_budget：该模型默认的上下文 token 上限。

新模型上线但 tiktoken 尚未收录时，只需在这里补一条配置。"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    name: str
    encoding: str
    context_budget: int


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "gpt-4o": ModelConfig(name="gpt-4o", encoding="o200k_base", context_budget=120000),
        "gpt-4o-mini": ModelConfig(name="gpt-4o-mini", encoding="o200k_base", context_budget=120000),
        "gpt-4.1": ModelConfig(name="gpt-4.1", encoding="o200k_base", context_budget=120000),
        "gpt-4.1-mini": ModelConfig(name="gpt-4.1-mini", encoding="o200k_base", context_budget=120000),
        "gpt-4.1-nano": ModelConfig(name="gpt-4.1-nano", encoding="o200k_base", context_budget=5000),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def get_model_config(model: str) -> Optional[ModelConfig]:
    """按模型名查找配置，未登记时返回 None。"""

    for cfg in PROVIDER_REGISTRY.values():
        if model in cfg.models:
            return cfg.models[model]
    return None
