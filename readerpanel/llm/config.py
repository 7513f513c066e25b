# config.py
# =============================================================================
# LLM 配置加载与合并模块 / LLM config loading & merging module
#
# 职责 / Responsibilities:
#   - 定义单个角色的端点配置（ModelEndpointConfig）
#     / Define the per-role endpoint config (ModelEndpointConfig)
#   - 按优先级合并：代码角色 > 代码 _default > 文件角色 > 文件 _default
#     / Merge by priority: code role > code _default > file role > file _default
#   - YAML 中支持 ${VAR} / ${VAR:-default} 环境变量引用
#     / Support ${VAR} / ${VAR:-default} env references in YAML
#   - 配置缺失时抛出 ConfigurationError，不提供硬编码模型
#     / Raise ConfigurationError when missing; no hardcoded models
#
# 角色 / Roles:
#   reader     — 分析、焦点小组发言、一对一聊天 / analysis, focus-group turns, 1:1 chat
#   moderator  — 焦点小组主持人 Scout / focus-group moderator "Scout"
#   extractor  — 记忆抽取与叙述合成（小模型） / memory extraction & narrative (small model)
#   executive  — 高管评估 / executive evaluation
# =============================================================================

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

VALID_API_MODES = ("anthropic", "chat_completions")

# 已知角色，仅用于缺失配置时的友好提示 / Known roles, only used for friendlier errors
KNOWN_ROLES = ("reader", "moderator", "extractor", "executive")

_ENV_REF_RE = re.compile(r"\$\{([^}]+)\}")


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================


@dataclass
class ModelEndpointConfig:
    """单个角色的模型端点配置。 / Model endpoint config for one role.

    适配器通过 from_endpoint_config() 读取本配置创建实例。
    / Adapters are built from this via from_endpoint_config().
    """

    model_platform: str  # "anthropic" / "openai" / "deepseek" ...
    model_name: str

    api_key: Optional[str] = None
    url: Optional[str] = None
    api_mode: str = "chat_completions"

    temperature: float = 0.7
    max_tokens: Optional[int] = 4096
    timeout: Optional[float] = None
    # 传输层重试，默认关闭；重试属于调用方职责 / Transport retries, off by default; retry is a caller concern
    max_retries: int = 0

    # Azure 专用 / Azure only
    api_version: Optional[str] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "model", "model_name", "model_platform", "api_key", "url",
        "api_mode", "temperature", "max_tokens", "timeout", "max_retries",
        "api_version",
    )

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典或模型名字符串构建。 / Build from a dict or a bare model name.

        - 简写 / Shorthand: "claude-sonnet-4-20250514"
        - 完整 / Full: {"model_name": "...", "api_key": "...", ...}
        """
        if isinstance(data, str):
            return cls(
                model_platform=infer_platform(data),
                model_name=data,
                api_mode=infer_api_mode(infer_platform(data)),
            )

        model_name = data.get("model_name") or data.get("model", "")
        platform = data.get("model_platform") or infer_platform(model_name)
        api_mode = data.get("api_mode") or infer_api_mode(platform, data.get("url"))
        if api_mode not in VALID_API_MODES:
            raise ValueError(
                f"不支持的 api_mode: '{api_mode}'。仅支持: {', '.join(VALID_API_MODES)}。"
            )

        return cls(
            model_platform=platform,
            model_name=model_name,
            api_key=data.get("api_key"),
            url=data.get("url"),
            api_mode=api_mode,
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=data["max_tokens"] if "max_tokens" in data else 4096,
            timeout=data.get("timeout"),
            max_retries=int(data.get("max_retries", 0)),
            api_version=data.get("api_version"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


# =============================================================================
# 平台与 API 模式推断 / Platform & API mode inference
# =============================================================================

_PLATFORM_INFERENCE_RULES: List[tuple] = [
    (["claude"], "anthropic"),
    (["gpt-", "o1-", "o3-", "o4-", "chatgpt"], "openai"),
    (["deepseek"], "deepseek"),
    (["qwen", "qwq"], "qwen"),
    (["llama", "mistral"], "ollama"),
]


def infer_platform(model_name: str) -> str:
    """根据模型名推断平台，未命中时回退为 "openai"。 / Infer platform; falls back to "openai"."""
    name_lower = (model_name or "").lower()
    for keywords, platform in _PLATFORM_INFERENCE_RULES:
        if any(kw in name_lower for kw in keywords):
            return platform
    logger.debug("无法从模型名称 '%s' 推断平台，使用默认 'openai'", model_name)
    return "openai"


def infer_api_mode(platform: str, url: Optional[str] = None) -> str:
    """anthropic 平台且未自定义 URL 时走 Messages API，其余走 Chat Completions。
    / Anthropic without a custom URL uses the Messages API; everything else Chat Completions.
    """
    if (platform or "").lower() == "anthropic" and not url:
        return "anthropic"
    if url and "/messages" in url:
        return "anthropic"
    return "chat_completions"


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================


class LLMConfigLoader:
    """LLM 配置加载器。 / LLM config loader.

    配置字典格式 / Dict format::

        {
            "_default": {"model_name": "claude-sonnet-4-20250514",
                         "api_key": "${ANTHROPIC_API_KEY}"},
            "reader": {"temperature": 0.8},
            "extractor": "claude-haiku-4-5",   # 简写 / shorthand
        }
    """

    _CONFIG_SEARCH_PATHS = (
        "llm_config.yaml",
        "llm_config.yml",
        "config/llm_config.yaml",
        "config/llm_config.yml",
    )

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._code_config: Dict[str, Any] = llm_config or {}
        self._file_config: Dict[str, Any] = self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> Dict[str, Any]:
        if config_file:
            path = Path(config_file)
            if not path.exists():
                logger.warning("指定的 LLM 配置文件不存在: %s", path)
                return {}
            logger.info("LLM 配置文件已加载: %s", path)
            return self._read_yaml(path)

        for search_path in self._CONFIG_SEARCH_PATHS:
            path = Path(search_path)
            if path.exists():
                logger.info("自动发现 LLM 配置文件: %s", path)
                return self._read_yaml(path)

        logger.debug("未发现 LLM 配置文件，将依赖代码配置")
        return {}

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return expand_env_vars(raw)

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析角色的完整配置（低优先级层先写入，高优先级层覆盖）。
        / Resolve a role's config; lower layers are written first, higher ones override.

        Raises:
            ConfigurationError: 合并后仍无 model_name。 / No model_name after merging.
        """
        from readerpanel.llm.router import ConfigurationError

        merged: Dict[str, Any] = {}
        layers = (
            self._file_config.get("_default"),
            self._file_config.get(role),
            self._code_config.get("_default"),
            self._code_config.get(role),
        )
        for layer in layers:
            if isinstance(layer, str):
                merged["model_name"] = layer
                merged["model_platform"] = infer_platform(layer)
            elif isinstance(layer, dict):
                merged.update({k: v for k, v in layer.items() if v is not None})

        model_name = merged.get("model_name") or merged.get("model", "")
        if not model_name:
            hint = ""
            if role in KNOWN_ROLES:
                hint = (
                    f"\n提示：'{role}' 是已知角色，请在 llm_config 参数、"
                    f"llm_config.yaml 或 _default 中为其指定模型。"
                )
            raise ConfigurationError(
                f"角色 '{role}' 的 LLM 模型配置缺失：未找到 model_name。{hint}"
            )
        merged["model_name"] = model_name
        return ModelEndpointConfig.from_dict(merged)

    def has_role(self, role: str) -> bool:
        if role in self._code_config or role in self._file_config:
            return True
        for cfg in (self._code_config, self._file_config):
            default = cfg.get("_default")
            if isinstance(default, dict) and (
                default.get("model_name") or default.get("model")
            ):
                return True
        return False

    def summary(self, roles: Optional[List[str]] = None) -> Dict[str, Dict[str, str]]:
        """配置摘要（隐藏 API Key），用于日志。 / Config summary with masked keys, for logging."""
        from readerpanel.llm.router import ConfigurationError

        result: Dict[str, Dict[str, str]] = {}
        for role in roles or KNOWN_ROLES:
            if not self.has_role(role):
                continue
            try:
                cfg = self.resolve(role)
            except (ConfigurationError, ValueError) as exc:
                logger.debug("角色 %s 配置无法解析，摘要中跳过: %s", role, exc)
                continue
            result[role] = {
                "platform": cfg.model_platform,
                "model": cfg.model_name,
                "api_mode": cfg.api_mode,
                "url": cfg.url or "(auto)",
                "api_key": mask_key(cfg.api_key),
            }
        return result


# =============================================================================
# 工具函数 / Utility Functions
# =============================================================================


def expand_env_vars(obj: Any) -> Any:
    """递归展开 ${VAR} 与 ${VAR:-default}。未设置且无默认值时保留原文。
    / Recursively expand ${VAR} and ${VAR:-default}; unset refs without a default stay as-is.
    """
    if isinstance(obj, str):

        def _replace(match: "re.Match[str]") -> str:
            expr = match.group(1)
            if ":-" in expr:
                name, default = expr.split(":-", 1)
                return os.environ.get(name.strip(), default.strip())
            return os.environ.get(expr.strip(), match.group(0))

        return _ENV_REF_RE.sub(_replace, obj)
    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    return obj


def mask_key(key: Optional[str]) -> str:
    """仅显示前 8 位与后 4 位。 / Show only the first 8 and last 4 chars."""
    if not key:
        return "(env)"
    if len(key) <= 12:
        return key[:3] + "***"
    return key[:8] + "..." + key[-4:]
