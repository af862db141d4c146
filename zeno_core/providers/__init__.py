"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (openai_client、gemini_client)。
"""

from typing import Callable, Dict, Optional

from zeno_core.config.settings import settings
from zeno_core.providers.base import ProviderClient
from zeno_core.providers.openai_client import OpenAIClient
from zeno_core.providers.gemini_client import GeminiClient
from zeno_core.providers.registry import get_provider_config


# 以 registry 中的 ProviderConfig.name 为 key
PROVIDER_CLIENTS: Dict[str, Callable[..., ProviderClient]] = {
    "openai": OpenAIClient,
    "gemini": GeminiClient,
}


def create_provider(name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的主 provider。

    名称先经 registry 解析（不区分大小写），未登记的名称抛出 KeyError。
    """

    cfg = cfg or settings
    provider_cfg = get_provider_config(name or getattr(cfg, "primary_provider", "openai"))
    return PROVIDER_CLIENTS[provider_cfg.name](cfg)
