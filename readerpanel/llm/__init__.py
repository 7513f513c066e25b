# llm/__init__.py
# 模型路由、调用次数控制、LLM 配置管理与适配器 / Model routing, call budget, LLM config & adapters

from readerpanel.llm.anthropic_adapter import AnthropicAdapter
from readerpanel.llm.chat_completions_adapter import ChatCompletionsAdapter
from readerpanel.llm.config import (
    LLMConfigLoader,
    ModelEndpointConfig,
)
from readerpanel.llm.router import (
    BudgetState,
    ConfigurationError,
    LLMClient,
    ModelRouter,
)

__all__ = [
    "AnthropicAdapter",
    "BudgetState",
    "ChatCompletionsAdapter",
    "ConfigurationError",
    "LLMClient",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "ModelRouter",
]
