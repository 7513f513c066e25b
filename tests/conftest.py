# tests/conftest.py
# =============================================================================
# 共享测试夹具 / Shared test fixtures
# - ScriptedLLM：脚本化的假推理客户端（generate + stream）
# - PanelResponder：按提示词类型路由回复的应答器
# - 人设、分析结果工厂 / personas & analysis result factories
# =============================================================================

import json
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from readerpanel.primitives.models import (
    AnalysisResult,
    AnalystPersona,
    Document,
    DocumentMetadata,
)
from readerpanel.session import PanelSession


def _user_text(messages: Any) -> str:
    if isinstance(messages, str):
        return messages
    return "\n".join(m["content"] for m in messages if m.get("role") == "user")


def split_chunks(text: str) -> List[str]:
    """按词切分并保留空白，拼接后与原文完全一致。"""
    return re.findall(r"\S+\s*|\s+", text)


class ScriptedLLM:
    """假推理客户端。 / Fake inference client.

    回复来源：responder(system, user_text) 或按顺序消费的 responses。
    值为异常实例时抛出该异常。
    """

    def __init__(
        self,
        responses: Iterable[Any] = (),
        responder: Optional[Callable[[str, str], Any]] = None,
    ):
        self._queue = list(responses)
        self._responder = responder
        self.calls: List[Dict[str, Any]] = []

    def _next(self, system_prompt: str, messages: Any) -> str:
        if self._responder is not None:
            value = self._responder(system_prompt, _user_text(messages))
        elif self._queue:
            value = self._queue.pop(0)
        else:
            raise AssertionError("ScriptedLLM ran out of responses")
        if isinstance(value, BaseException):
            raise value
        return value

    async def generate(self, system_prompt: str, messages: Any) -> str:
        self.calls.append({"method": "generate", "system": system_prompt, "messages": messages})
        return self._next(system_prompt, messages)

    async def stream(self, system_prompt: str, messages: Any):
        self.calls.append({"method": "stream", "system": system_prompt, "messages": messages})
        text = self._next(system_prompt, messages)
        for chunk in split_chunks(text):
            yield chunk

    @property
    def prompts(self) -> List[str]:
        return [_user_text(c["messages"]) for c in self.calls]


# ---------------------------------------------------------------------------
# 分析结果 / Analysis results
# ---------------------------------------------------------------------------

def make_analysis_payload(
    overall: int = 70,
    evidence: int = 100,
    recommendation: str = "consider",
    scores: Optional[Dict[str, int]] = None,
    strengths: Optional[List[str]] = None,
    concerns: Optional[List[str]] = None,
    logline: str = "A lighthouse keeper finds a message meant for someone else.",
    synopsis: str = "",
) -> Dict[str, Any]:
    values = {
        "premise": overall, "character": overall, "dialogue": overall,
        "structure": overall, "commerciality": overall, "overall": overall,
    }
    values.update(scores or {})
    return {
        "scores": values,
        "recommendation": recommendation,
        "key_strengths": strengths or ["Vivid setting", "Strong protagonist"],
        "key_concerns": concerns or ["Slow second act", "Thin antagonist"],
        "standout_quote": "The fog scene lands.",
        "evidence_strength": evidence,
        "logline": logline,
        "synopsis": synopsis,
        "analysis": {dim: f"{dim} notes" for dim in values},
    }


@pytest.fixture
def analysis_payload():
    return make_analysis_payload


@pytest.fixture
def make_result():
    def _make(analyst_id: str, **kwargs) -> AnalysisResult:
        return AnalysisResult.from_llm(make_analysis_payload(**kwargs), analyst_id)
    return _make


# ---------------------------------------------------------------------------
# 人设与文稿 / Personas & document
# ---------------------------------------------------------------------------

def _persona(pid: str, name: str, display: str) -> AnalystPersona:
    return AnalystPersona(
        id=pid,
        name=name,
        display_name=display,
        system_prompt=f"You are {name}, a script reader known as {display}.",
        weights={"premise": 1.0, "overall": 1.0},
    )


@pytest.fixture
def personas() -> Dict[str, AnalystPersona]:
    return {
        "reader-maya": _persona("reader-maya", "Maya Chen", "The Optimist"),
        "reader-devon": _persona("reader-devon", "Devon Park", "The Skeptic"),
        "reader-colton": _persona("reader-colton", "Colton Rivers", "The Craftsman"),
    }


@pytest.fixture
def document() -> Document:
    return Document(
        text="INT. LIGHTHOUSE - NIGHT\nMARA climbs the stairs.",
        metadata=DocumentMetadata(title="The Keeper", author="J. Doe", genre="Drama", page_count=98),
    )


# ---------------------------------------------------------------------------
# 按提示词路由的应答器 / Prompt-routing responder
# ---------------------------------------------------------------------------

_NAME_IN_SYSTEM = re.compile(r"You are ([^,]+), a script reader")
_NAME_IN_PROMPT = re.compile(r"(?:Respond naturally as|Stay in character as) ([^(]+?) \(")


class PanelResponder:
    """为一次完整评审路由回复。 / Routes replies for a whole panel run.

    analyses: 分析员名 -> 分析 JSON（dict）或异常
    reaction: (分析员名, 提示词) -> 回复文本，默认 PASS
    failing_readers: 焦点小组回应时抛错的分析员名
    """

    def __init__(
        self,
        analyses: Optional[Dict[str, Any]] = None,
        reaction: Optional[Callable[[str, str], str]] = None,
        failing_readers: Iterable[str] = (),
        moderator_error: Optional[Exception] = None,
        extraction: Any = "[]",
    ):
        self.analyses = analyses or {}
        self.reaction = reaction or (lambda name, prompt: "PASS")
        self.failing_readers = set(failing_readers)
        self.moderator_error = moderator_error
        self.extraction = extraction

    def __call__(self, system: str, prompt: str) -> Any:
        if "Analyze the following script" in prompt:
            name = _NAME_IN_SYSTEM.search(system).group(1)
            payload = self.analyses.get(name, make_analysis_payload())
            return payload if isinstance(payload, BaseException) else json.dumps(payload)
        if "Extract memory items" in prompt:
            return self.extraction
        if "Evolve the narrative" in prompt:
            return json.dumps({"narrative_summary": "I still believe in this script.",
                               "evolution_notes": ""})
        if "Generate" in prompt and "focus group questions" in prompt:
            return json.dumps([
                {"question": "Does the ending land?", "rationale": "r",
                 "target_reader": "all", "topic": "structure"},
            ])
        if prompt.startswith("You are opening"):
            return self.moderator_error or "Welcome, readers. Let's begin."
        if prompt.startswith("Synthesize what the readers just said"):
            return "Good points all around. Moving on."
        if prompt.startswith("Close the focus group"):
            return "Thank you all for a lively discussion."
        if "The moderator just asked about" in prompt:
            name = _NAME_IN_PROMPT.search(prompt).group(1)
            if name in self.failing_readers:
                return RuntimeError(f"{name} timed out")
            return f"{name} thinks the second act drags."
        if "If you have nothing compelling to add" in prompt:
            return self.reaction(_NAME_IN_PROMPT.search(prompt).group(1), prompt)
        return "Happy to talk about the script."


@pytest.fixture
def panel_responder():
    return PanelResponder


@pytest.fixture
def make_session(document, personas):
    """以共享假客户端构建评审会话。 / Builds a panel session around one fake client."""
    def _make(llm, **kwargs) -> PanelSession:
        kwargs.setdefault("personas", personas)
        kwargs.setdefault("executives", {})
        return PanelSession(document, "the-keeper", llm=llm, **kwargs)
    return _make
