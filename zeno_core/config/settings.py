"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("ZENO_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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
    """全局配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    primary_provider: str = Field(default="openai", description="主 Provider 名称")
    fallback_provider: str = Field(default="gemini", description="备用 Provider 名称，主 Provider 失败时使用")
    default_model: str = Field(
        default="zeno-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 生成参数 ----
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="默认生成温度")
    max_tokens: int = Field(default=4096, ge=1, description="默认最大输出 token 数")

    # ---- 上下文 ----
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")
    file_context_max_chars: int = Field(default=8000, ge=100, description="单个文件注入上下文的最大字符数")
    max_message_chars: int = Field(default=10000, ge=1, description="单条用户消息最大长度")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1, description="上传文件大小上限")
    conversation_list_limit: int = Field(default=50, ge=1, description="会话列表最大返回条数")

    # ---- 图像生成 ----
    image_base_url: str = Field(default="https://image.pollinations.ai/prompt", description="图像生成服务地址")
    image_validate: bool = Field(default=False, description="是否用 HEAD 请求校验生成的图片地址")
    image_validate_timeout: float = Field(default=10.0, ge=1.0, description="图片校验超时（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("openai_api_key", "gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
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
            _load_config_from_yaml,
            file_secret_settings,
        )


settings = Settings()
