#!/usr/bin/env python3
"""Shared utilities for readerpanel E2E examples.

Provides common infrastructure so each E2E script stays concise:
  - Logging bootstrap
  - Terminal progress callback for every panel event type
  - Deliverable / focus-group / executive summaries
  - CLI helpers
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

# Project root (examples/ is one level below repo root)
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from readerpanel.primitives.events import PanelEvent  # noqa: E402
from readerpanel.primitives.models import (  # noqa: E402
    ExecutiveEvaluation,
    FocusGroupSession,
    PanelDeliverable,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Logging bootstrap (idempotent)
# =============================================================================

def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


# =============================================================================
# Progress display
# =============================================================================

_PHASE_CN = {
    "idle": "空闲",
    "analysis": "并发评审",
    "focus_group": "焦点小组",
    "reader_chat": "分析员聊天",
    "executive": "高管评估",
}

_BAR_WIDTH = 30
_BAR_FILL = "█"
_BAR_EMPTY = "░"


def _progress_bar(progress: float) -> str:
    filled = int(_BAR_WIDTH * progress)
    empty = _BAR_WIDTH - filled
    return f"[{_BAR_FILL * filled}{_BAR_EMPTY * empty}] {progress:>5.1%}"


def print_progress(event: PanelEvent) -> None:
    """Terminal progress callback (sync). Plug into ``analyze(on_progress=...)``."""
    if event.type == "phase-change":
        print(f"  ▶ {_PHASE_CN.get(event.phase, event.phase)} 开始")

    elif event.type == "analyst-start":
        print(f"    → {event.analyst_name} 开始阅读")

    elif event.type == "analyst-progress":
        print(f"    {_progress_bar(event.progress)}  {event.analyst_id}: {event.message}")

    elif event.type == "analyst-complete":
        overall = event.scores.get("overall", "?")
        print(f"    ← {event.analyst_id}: {event.recommendation.upper()} (overall {overall})")

    elif event.type == "analyst-error":
        print(f"    ✗ {event.analyst_id}: {event.error}")

    elif event.type == "focus-group-message":
        message = event.message
        label = "主持人" if message.speaker_type == "moderator" else message.speaker
        prefix = f"↳ {message.reaction} " if message.is_reaction else ""
        print(f"\n  [{label}] {prefix}{message.content}")

    elif event.type == "executive-complete":
        if event.evaluation is not None:
            ev = event.evaluation
            print(f"    ← {ev.executive_name}: {ev.verdict.upper()} ({ev.confidence}%)")
        else:
            print(f"    ✗ {event.executive_id}: {event.error}")

    elif event.type == "error":
        print(f"  ⚠ {event.message}")


# =============================================================================
# Summaries
# =============================================================================

def print_deliverable_summary(deliverable: PanelDeliverable, label: str) -> None:
    """Print harmonized scores, consensus and divergences."""
    print()
    print("=" * 60)
    print(f"  {label} — 评审摘要")
    print("=" * 60)
    for dim, score in deliverable.harmonized.items():
        print(f"  {dim + ':':16s}{score.rating:<10s} {score.numeric:>3d}  (P{score.percentile})")
    synthesis = deliverable.synthesis
    print(f"\n  推荐:       {synthesis.recommendation.upper()} ({synthesis.confidence})")
    print(f"  共识点:     {len(synthesis.consensus)}")
    for divergence in synthesis.divergences:
        print(f"  分歧:       {divergence.topic}")
    if deliverable.failures:
        print(f"  失败:       {', '.join(sorted(deliverable.failures))}")
    print(f"\n  {synthesis.narrative}")
    print("=" * 60)


def print_focus_group_summary(session: FocusGroupSession) -> None:
    print()
    print("=" * 60)
    status = "已中止" if session.aborted else session.state
    print(f"  焦点小组 — {len(session.messages)} 条发言，状态：{status}")
    print("=" * 60)


def print_executive_summary(evaluations: Dict[str, ExecutiveEvaluation]) -> None:
    print()
    print("=" * 60)
    print("  高管评估")
    print("=" * 60)
    for evaluation in evaluations.values():
        print(f"  {evaluation.executive_name}: {evaluation.verdict.upper()} "
              f"({evaluation.confidence}%) — {evaluation.rationale}")
    print("=" * 60)


# =============================================================================
# CLI helpers
# =============================================================================

def config_file_path() -> Optional[str]:
    """Return path to project-root llm_config.yaml, or None."""
    p = REPO_ROOT / "llm_config.yaml"
    return str(p) if p.exists() else None


def create_arg_parser(description: str) -> argparse.ArgumentParser:
    """Create a standard argument parser for E2E scripts."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--draft",
        type=int,
        default=1,
        help="稿次（默认 1；第二稿可看到跨稿记忆回退）",
    )
    parser.add_argument(
        "--memory-dir",
        default=None,
        help="JSON 记忆存储目录（不传则使用内存存储，进程结束即丢失）",
    )
    parser.add_argument(
        "--record-dir",
        default=None,
        help="焦点小组会话记录目录（可选）",
    )
    parser.add_argument(
        "--no-focus-group",
        action="store_true",
        help="跳过焦点小组",
    )
    return parser
