# memory.py
# =============================================================================
# 跨稿记忆 — 写引擎与读引擎。
# / Cross-draft memory: write and read engines.
#
# 三层记忆（按 analyst, project, draft 分区） / Three tiers per (analyst, project, draft):
#   L1 items     — 原子事实，只追加 / atomic facts, append-only
#   L2 snapshot  — 最新评分/优缺点/推荐 / latest scores, strengths, concerns
#   L3 narrative — 叙述摘要 + 演化笔记，每次写入整体替换 / replaced on every write
#
# 写入顺序由调用方保证（coverage -> focus_group -> chat），引擎内部不加锁。
# / Writes are sequenced by the caller; the engines take no locks.
# =============================================================================

"""跨稿记忆引擎。 / Cross-draft memory engines."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from readerpanel.engine.memory_store import MemoryStore
from readerpanel.llm.router import LLMClient
from readerpanel.primitives.models import (
    IMPORTANCE_LEVELS,
    MEMORY_TOPICS,
    SCORED_DIMENSIONS,
    MemoryEvent,
    MemoryItem,
    MemoryRecall,
    ReaderMemory,
    ScoreDelta,
)
from readerpanel.prompts import (
    MEMORY_EXTRACT_SYSTEM,
    MEMORY_EXTRACT_USER,
    MEMORY_NARRATIVE_PRIOR,
    MEMORY_NARRATIVE_SYSTEM,
    MEMORY_NARRATIVE_USER,
)
from readerpanel.utils.json_parser import parse_json_array_from_llm, parse_json_from_llm

logger = logging.getLogger(__name__)

MAX_EXTRACTED_ITEMS = 15
MAX_EVENT_CHARS = 4000
# 无法合成叙述时，用事件原文的前 N 个字符兜底 / raw-content fallback length
CONDENSED_CHARS = 500

RECENT_STATEMENTS = 5
RECENT_HIGHLIGHTS = 3


def compute_score_deltas(
    prior: ReaderMemory, scores: Dict[str, int], ratings: Dict[str, str],
) -> List[ScoreDelta]:
    """与上一稿相比数值有变化的维度。 / Dimensions whose numeric score changed since the prior draft."""
    deltas = []
    for dim in SCORED_DIMENSIONS:
        if dim not in prior.scores or dim not in scores:
            continue
        if prior.scores[dim] == scores[dim]:
            continue
        deltas.append(ScoreDelta(
            dimension=dim,
            previous_numeric=prior.scores[dim],
            current_numeric=scores[dim],
            previous_rating=prior.ratings.get(dim, ""),
            current_rating=ratings.get(dim, ""),
        ))
    return deltas


def _parse_item(raw: Any, source: str) -> Optional[MemoryItem]:
    if not isinstance(raw, dict):
        return None
    content = str(raw.get("content") or "").strip()
    if not content:
        return None
    topic = str(raw.get("topic") or "general").strip().lower()
    importance = str(raw.get("importance") or "medium").strip().lower()
    page = raw.get("page_reference")
    return MemoryItem(
        content=content,
        topic=topic if topic in MEMORY_TOPICS else "general",
        importance=importance if importance in IMPORTANCE_LEVELS else "medium",
        source=source,
        page_reference=page if isinstance(page, int) and not isinstance(page, bool) else None,
    )


class MemoryWriteEngine:
    """记忆写引擎：抽取 L1、更新 L2、演化 L3，并按键幂等写回。
    / Write engine: extract L1, update L2, evolve L3, upsert idempotently by key.
    """

    def __init__(self, store: MemoryStore, extractor: LLMClient):
        self._store = store
        self._extractor = extractor

    async def memorize(
        self,
        analyst_id: str,
        project_id: str,
        draft_number: int,
        event: MemoryEvent,
        prior_memory: Optional[ReaderMemory] = None,
    ) -> ReaderMemory:
        """将一个事件并入 (analyst, project, draft) 的记忆。

        prior_memory 未传入时自动查找同项目上一稿的记忆。
        / When prior_memory is omitted the same project's previous draft is looked up.

        Raises:
            存储异常原样抛出（调用方在后台任务中记录并吞掉）。
            / Storage errors propagate; background callers log and swallow them.
        """
        if prior_memory is None and draft_number > 1:
            prior_memory = await self._store.get(analyst_id, project_id, draft_number - 1)

        existing = await self._store.get(analyst_id, project_id, draft_number)
        memory = existing or ReaderMemory(
            analyst_id=analyst_id, project_id=project_id, draft_number=draft_number,
        )

        # STAGE 1: L1 抽取（失败 -> 零条目，叙述照常进行）
        items = await self._extract_items(event)

        # STAGE 2: L2 快照与分数变化
        if event.type == "coverage" and event.analysis is not None:
            analysis = event.analysis
            memory.ratings = dict(analysis.ratings)
            memory.scores = dict(analysis.scores)
            memory.recommendation = analysis.recommendation
            memory.key_strengths = list(analysis.key_strengths)
            memory.key_concerns = list(analysis.key_concerns)
            memory.evidence_strength = analysis.evidence_strength
            memory.score_deltas = []
            if prior_memory is not None and prior_memory.scores:
                memory.score_deltas = compute_score_deltas(
                    prior_memory, memory.scores, memory.ratings,
                )
        elif event.type == "focus_group":
            memory.focus_group_statements.extend(
                [item.content for item in items] or [event.content[:MAX_EVENT_CHARS]]
            )
        elif event.type == "chat":
            highlights = [i.content for i in items if i.importance in ("high", "medium")]
            memory.chat_highlights.extend(highlights or [event.content[:CONDENSED_CHARS]])

        # STAGE 3: L3 叙述演化（替换，不追加）
        summary, notes = await self._evolve_narrative(memory, items, event, prior_memory)
        memory.narrative_summary = summary
        memory.evolution_notes = notes

        memory.prior_draft_number = prior_memory.draft_number if prior_memory else None
        memory.updated_at = time.time()

        stored = await self._store.upsert(memory)
        if items:
            await self._store.append_items(stored.memory_id, items)
        logger.info(
            "记忆已写入: %s / %s / draft %d (%s, %d 条事实)",
            analyst_id, project_id, draft_number, event.type, len(items),
        )
        return stored

    async def _extract_items(self, event: MemoryEvent) -> List[MemoryItem]:
        try:
            raw = await self._extractor.generate(
                MEMORY_EXTRACT_SYSTEM.format(
                    topics=" | ".join(f'"{t}"' for t in MEMORY_TOPICS),
                    max_items=MAX_EXTRACTED_ITEMS,
                ),
                MEMORY_EXTRACT_USER.format(
                    event_type=event.type, content=event.content[:MAX_EVENT_CHARS],
                ),
            )
            parsed = parse_json_array_from_llm(raw)
        except Exception as e:
            logger.warning("记忆事实抽取失败，按零条目处理: %s", e)
            return []

        items = []
        for entry in parsed:
            item = _parse_item(entry, event.type)
            if item is not None:
                items.append(item)
            if len(items) >= MAX_EXTRACTED_ITEMS:
                break
        return items

    async def _evolve_narrative(
        self,
        memory: ReaderMemory,
        items: List[MemoryItem],
        event: MemoryEvent,
        prior: Optional[ReaderMemory],
    ) -> tuple:
        if items:
            new_information = "\n".join(f"- [{i.topic}] {i.content}" for i in items)
        else:
            new_information = event.content[:MAX_EVENT_CHARS]

        prior_section = ""
        if prior is not None and prior.narrative_summary:
            prior_section = MEMORY_NARRATIVE_PRIOR.format(
                draft_number=prior.draft_number, summary=prior.narrative_summary,
            )

        try:
            raw = await self._extractor.generate(
                MEMORY_NARRATIVE_SYSTEM,
                MEMORY_NARRATIVE_USER.format(
                    analyst_id=memory.analyst_id,
                    draft_number=memory.draft_number,
                    existing=memory.narrative_summary or "No existing narrative.",
                    prior_section=prior_section,
                    event_type=event.type,
                    new_information=new_information,
                ),
            )
            data = parse_json_from_llm(raw)
            summary = str(data.get("narrative_summary") or "").strip()
            if not summary:
                raise ValueError("narrative_summary is empty")
            return summary, str(data.get("evolution_notes") or "").strip()
        except Exception as e:
            logger.warning("记忆叙述演化失败，保留原叙述: %s", e)
            fallback = memory.narrative_summary or event.content[:CONDENSED_CHARS].strip()
            return fallback, memory.evolution_notes


class MemoryReadEngine:
    """记忆读引擎：精确查找、上一稿回退、渲染为提示词上下文。
    / Read engine: exact lookup, prior-draft fallback, prompt-context rendering.
    """

    def __init__(self, store: MemoryStore):
        self._store = store

    async def recall(
        self,
        analyst_id: str,
        project_id: str,
        draft_number: int,
        topic: Optional[str] = None,
        include_prior: bool = True,
    ) -> MemoryRecall:
        """读取记忆。当前稿缺失时只回退到 draft_number-1（同项目），并标记为上一稿。

        include_prior=False 时既不回退，也不附带上一稿记录。
        / Falls back one draft only, flagged prior. include_prior=False disables
          both the fallback and the attached prior record.
        """
        memory = await self._store.get(analyst_id, project_id, draft_number)
        is_prior = False
        if memory is None:
            if not include_prior or draft_number <= 1:
                return MemoryRecall()
            memory = await self._store.get(analyst_id, project_id, draft_number - 1)
            if memory is None:
                return MemoryRecall()
            is_prior = True

        items = await self._store.get_items(memory.memory_id)
        if topic:
            items = [i for i in items if i.topic == topic]

        prior = None
        if include_prior and not is_prior and memory.prior_draft_number is not None:
            prior = await self._store.get(analyst_id, project_id, memory.prior_draft_number)

        return MemoryRecall(memory=memory, items=items, is_prior_draft=is_prior, prior=prior)

    async def recall_all(
        self,
        project_id: str,
        draft_number: int,
        analyst_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, MemoryRecall]:
        """所有分析员的记忆（同样的回退规则），只返回找到的。
        / Every analyst's memory with the same fallback; only found entries.
        """
        if analyst_ids is None:
            analyst_ids = await self._store.list_analysts(project_id)
        recalls: Dict[str, MemoryRecall] = {}
        for analyst_id in analyst_ids:
            recall = await self.recall(analyst_id, project_id, draft_number)
            if recall.found:
                recalls[analyst_id] = recall
        return recalls

    async def query_by_topic(self, recall: MemoryRecall, topic: str) -> List[MemoryItem]:
        if not recall.found:
            return []
        items = await self._store.get_items(recall.memory.memory_id)
        return [i for i in items if i.topic == topic]

    @staticmethod
    def render_context(recall: Optional[MemoryRecall]) -> str:
        """将记忆渲染为可插入提示词的上下文；这是记忆回到推理循环的唯一途径。
        / Render memory as a prompt block; the only way memory re-enters reasoning.
        """
        if recall is None or not recall.found:
            return ""
        memory = recall.memory
        lines: List[str] = []
        if recall.is_prior_draft:
            lines.append(
                f"NOTE: This memory is from draft {memory.draft_number}, a PRIOR draft, "
                "not the current one. The script may have changed since you last read it."
            )
            lines.append("")

        lines.append("YOUR MEMORY OF THIS PROJECT:")
        lines.append("")
        lines.append("NARRATIVE SUMMARY:")
        lines.append(memory.narrative_summary or "(none yet)")

        if memory.evolution_notes:
            lines.extend(["", "EVOLUTION FROM PRIOR DRAFT:", memory.evolution_notes])

        if memory.scores:
            scores = ", ".join(
                f"{dim} {memory.ratings.get(dim, '?')} ({memory.scores[dim]})"
                for dim in SCORED_DIMENSIONS if dim in memory.scores
            )
            lines.extend(["", f"YOUR SCORES: {scores}"])
        if memory.recommendation:
            lines.append(f"YOUR RECOMMENDATION: {memory.recommendation}")
        if memory.key_strengths:
            lines.append(f"STRENGTHS YOU NOTED: {'; '.join(memory.key_strengths)}")
        if memory.key_concerns:
            lines.append(f"CONCERNS YOU NOTED: {'; '.join(memory.key_concerns)}")

        if memory.focus_group_statements:
            lines.extend(["", "YOUR RECENT FOCUS GROUP STATEMENTS:"])
            lines.extend(f'- "{s}"' for s in memory.focus_group_statements[-RECENT_STATEMENTS:])

        if memory.chat_highlights:
            lines.extend(["", "RECENT CHAT HIGHLIGHTS:"])
            lines.extend(f"- {h}" for h in memory.chat_highlights[-RECENT_HIGHLIGHTS:])

        if memory.score_deltas:
            lines.extend(["", "SCORE CHANGES FROM PRIOR DRAFT:"])
            for d in memory.score_deltas:
                lines.append(
                    f"- {d.dimension}: {d.previous_rating} ({d.previous_numeric}) -> "
                    f"{d.current_rating} ({d.current_numeric}), {d.change:+d}"
                )

        return "\n".join(lines)
