"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 上游补全接口 ----
    openai_api_key: Optional[SecretStr] = Field(default=None, description="补全接口 Bearer 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="补全接口基础URL",
    )

    # ---- 模型与 token 预算 ----
    model: str = Field(default="gpt-4o", description="主回复使用的模型")
    streaming_budget_tokens: Optional[int] = Field(
        default=None,
        ge=0,
        description="主回复请求的上下文 token 上限，留空时使用模型登记的默认预算",
    )
    summary_model: str = Field(default="gpt-4.1-nano", description="生成标题使用的廉价模型")
    summary_budget_tokens: Optional[int] = Field(
        default=None,
        ge=0,
        description="生成标题请求的上下文 token 上限，留空时使用模型登记的默认预算",
    )
    system_prompt: Optional[str] = Field(default=None, description="每轮对话前置的系统指令，留空时使用 prompts/system.md")

    # ---- 超时 ----
    http_timeout: float = Field(default=30.0, ge=1.0, description="非流式请求及建连超时（秒）")
    stream_read_timeout: float = Field(
        default=120.0,
        ge=1.0,
        description="流式响应两次数据之间允许的最长静默（秒）",
    )

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- HTTP 服务 ----
    host: str = Field(default="127.0.0.1", description="监听地址")
    port: int = Field(default=3000, ge=1, le=65535, description="监听端口")
    static_dir: str = Field(default="public", description="静态文件目录，不存在则不挂载")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        if v is not None and len(v.get_secret_value()) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
