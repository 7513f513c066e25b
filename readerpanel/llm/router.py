# router.py
# =============================================================================
# 按角色路由推理请求，并在一个路由器实例内共享调用次数上限。
#
# 角色：reader / moderator / extractor / executive
# 每个角色通过 LLMClient 暴露同一组接口：
#     generate(system_prompt, messages) -> str
#     stream(system_prompt, messages)   -> AsyncIterator[str]
#
# 模型配置来源（高→低）：代码传入的 llm_config、llm_config.yaml、
# YAML 中以 ${VAR} 引用的环境变量。没有内置默认模型，缺失即 ConfigurationError。
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, AsyncIterator, Callable, Dict, Optional

from readerpanel.errors import BudgetExceededError
from readerpanel.llm.transport import Messages

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """某个角色的模型配置缺失或无法使用。"""


class BudgetState:
    """调用次数预算。 / Call budget shared by every role of one router.

    上限按「尝试」计数，失败的请求同样占用额度；max_calls <= 0 表示不限制。
    """

    def __init__(self, max_calls: int = 200) -> None:
        self.max_calls = max_calls
        self.attempts_by_role: Counter = Counter()
        self.calls_by_role: Counter = Counter()

    @property
    def total_attempts(self) -> int:
        return sum(self.attempts_by_role.values())

    @property
    def total_calls(self) -> int:
        return sum(self.calls_by_role.values())

    @property
    def is_unlimited(self) -> bool:
        return self.max_calls <= 0

    @property
    def is_exceeded(self) -> bool:
        return not self.is_unlimited and self.total_attempts >= self.max_calls

    @property
    def remaining(self) -> int:
        """剩余额度；不限制时为 -1。"""
        return -1 if self.is_unlimited else max(0, self.max_calls - self.total_attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_calls": self.max_calls,
            "unlimited": self.is_unlimited,
            "remaining": self.remaining,
            "total_attempts": self.total_attempts,
            "total_calls": self.total_calls,
            "attempts_by_role": dict(self.attempts_by_role),
            "calls_by_role": dict(self.calls_by_role),
        }


def _anthropic(config) -> Any:
    from readerpanel.llm.anthropic_adapter import AnthropicAdapter
    return AnthropicAdapter.from_endpoint_config(config)


def _chat_completions(config) -> Any:
    from readerpanel.llm.chat_completions_adapter import ChatCompletionsAdapter
    return ChatCompletionsAdapter.from_endpoint_config(config)


_ADAPTER_FACTORIES: Dict[str, Callable[[Any], Any]] = {
    "anthropic": _anthropic,
    "chat_completions": _chat_completions,
}


class ModelRouter:
    """角色 → 适配器的路由器，适配器按角色懒创建并缓存。"""

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        max_llm_calls: int = 200,
        config_file: Optional[str] = None,
    ) -> None:
        """Args:
            llm_config: 代码传入的模型配置（最高优先级），格式见 LLMConfigLoader。
            max_llm_calls: 调用次数上限，<= 0 表示不限制。
            config_file: 配置文件路径；不传则在工作目录中自动查找。
        """
        from readerpanel.llm.config import LLMConfigLoader

        self._config_loader = LLMConfigLoader(llm_config=llm_config, config_file=config_file)
        self._budget = BudgetState(max_calls=max_llm_calls)
        self._model_cache: Dict[str, Any] = {}

        for role, info in self._config_loader.summary().items():
            logger.info(
                "角色 %s 使用 %s/%s (%s) @ %s, key=%s",
                role, info["platform"], info["model"], info["api_mode"],
                info["url"], info["api_key"],
            )
        logger.info(
            "LLM 调用上限: %s", "不限制" if self._budget.is_unlimited else max_llm_calls,
        )

    @property
    def budget(self) -> BudgetState:
        return self._budget

    @property
    def config_loader(self) -> Any:
        return self._config_loader

    def client(self, role: str) -> LLMClient:
        return LLMClient(self, role)

    def get_model_backend(self, role: str) -> Any:
        """Raises:
            ConfigurationError: 角色无可用配置或 api_mode 不受支持。
        """
        adapter = self._model_cache.get(role)
        if adapter is not None:
            return adapter

        config = self._config_loader.resolve(role)
        factory = _ADAPTER_FACTORIES.get(config.api_mode)
        if factory is None:
            raise ConfigurationError(
                f"角色 '{role}' 的 api_mode '{config.api_mode}' 不受支持，"
                f"可选: {', '.join(_ADAPTER_FACTORIES)}。"
            )
        adapter = self._model_cache[role] = factory(config)
        logger.info(
            "已为角色 %s 创建 %s 适配器: model=%s",
            role, config.api_mode, config.model_name,
        )
        return adapter

    def clear_model_cache(self) -> None:
        self._model_cache.clear()

    def begin_call(self, role: str) -> None:
        """占用一次额度。

        Raises:
            BudgetExceededError: 额度已用尽。
        """
        budget = self._budget
        if budget.is_exceeded:
            logger.warning("LLM 调用额度已用尽 (%d/%d)，拒绝角色 %s",
                           budget.total_attempts, budget.max_calls, role)
            raise BudgetExceededError(f"LLM 调用次数已达上限（角色: {role}）")
        budget.attempts_by_role[role] += 1
        logger.debug("[%s] LLM 调用尝试 #%d", role, budget.total_attempts)

    def record_call(self, role: str) -> None:
        self._budget.calls_by_role[role] += 1


class LLMClient:
    """绑定角色的推理客户端 — Agent 与引擎只依赖这两个方法。
    / Role-bound inference client; agents and engines depend only on these two methods.
    """

    def __init__(self, router: ModelRouter, role: str) -> None:
        self._router = router
        self._role = role

    @property
    def role(self) -> str:
        return self._role

    async def generate(self, system_prompt: str, messages: Messages) -> str:
        self._router.begin_call(self._role)
        adapter = self._router.get_model_backend(self._role)
        content = await adapter.generate(system_prompt, messages)
        self._router.record_call(self._role)
        return content

    async def stream(self, system_prompt: str, messages: Messages) -> AsyncIterator[str]:
        self._router.begin_call(self._role)
        adapter = self._router.get_model_backend(self._role)
        async for chunk in adapter.stream(system_prompt, messages):
            yield chunk
        self._router.record_call(self._role)
