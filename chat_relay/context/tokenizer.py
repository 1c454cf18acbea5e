"""基于 tiktoken 的 token 计数。

编码按模型选择：主回复与标题生成使用不同的模型和不同的预算。
tiktoken 不认识的模型先查模型登记表，仍查不到时使用 o200k_base。
"""
from __future__ import annotations

from functools import lru_cache
from typing import Callable

import tiktoken

from chat_relay.providers.registry import get_model_config

TokenCounter = Callable[[str], int]

DEFAULT_ENCODING = "o200k_base"


@lru_cache(maxsize=None)
def _encoding_for(model: str) -> "tiktoken.Encoding":
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        model_cfg = get_model_config(model)
        return tiktoken.get_encoding(model_cfg.encoding if model_cfg else DEFAULT_ENCODING)


def get_token_counter(model: str) -> TokenCounter:
    """返回按 model 的编码计算文本 token 数的函数。"""
    enc = _encoding_for(model)

    def count(text: str) -> int:
        return len(enc.encode(text or "", disallowed_special=()))

    return count
