# errors.py
# =============================================================================
# 领域异常定义。 / Domain exception definitions.
#
# 分类 / Taxonomy:
#   - 分析员失败：单个 Agent 输出无效，由 fan-out 局部恢复。
#     / Analyst failure: one agent's output is invalid, recovered locally by the fan-out.
#   - 批次失败：没有任何分析员成功，需由调用方重试。
#     / Batch failure: no analyst succeeded, caller must retry.
#   - 会话 / 事件流已关闭：写入被拒绝。
#     / Session or relay closed: writes are rejected.
#
# ConfigurationError 保留在 llm/router.py 中定义。
# / ConfigurationError stays defined in llm/router.py.
# =============================================================================

from __future__ import annotations

# -----------------------------------------------------------------------------
# 人设文件错误码 / Persona file error codes
# -----------------------------------------------------------------------------
PERSONA_NOT_FOUND = "PERSONA_NOT_FOUND"
PERSONA_SCHEMA_INVALID = "PERSONA_SCHEMA_INVALID"


class PersonaValidationError(Exception):
    """人设文件校验错误 — 携带错误码与诊断信息。 / Persona file error with code and message."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class AnalysisValidationError(ValueError):
    """分析员输出不符合 AnalysisResult 结构。 / Analyst output does not match the AnalysisResult schema."""


class BatchAnalysisError(RuntimeError):
    """所有分析员均失败。 / Every analyst in the batch failed."""

    def __init__(self, failures: dict) -> None:
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures)) or "(none requested)"
        super().__init__(f"No analyst produced a valid result: {names}")


class HarmonizationError(ValueError):
    """对零个结果执行合成。 / Harmonization invoked with zero results."""


class SessionClosedError(RuntimeError):
    """焦点小组会话已完成，不允许继续写入。 / Focus-group session is complete; no further writes."""


class RelayClosedError(RuntimeError):
    """事件流已关闭。 / The event relay has been closed."""


class BudgetExceededError(RuntimeError):
    """LLM 调用次数已达上限。 / LLM call cap reached."""
