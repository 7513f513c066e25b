#!/usr/bin/env python3
# =============================================================================
# e2e_panel_review.py
# — Full panel pass over a short sample script: analysis, streamed focus
#   group, executive greenlight and one follow-up chat.
#
# Usage:
#   python examples/e2e_panel_review.py
#   python examples/e2e_panel_review.py --memory-dir .panel_memory
#   python examples/e2e_panel_review.py --memory-dir .panel_memory --draft 2
#   python examples/e2e_panel_review.py --no-focus-group
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from e2e_helpers import (
    config_file_path,
    create_arg_parser,
    print_deliverable_summary,
    print_executive_summary,
    print_focus_group_summary,
    print_progress,
    setup_logging,
)

from readerpanel import (
    Document,
    DocumentMetadata,
    PanelSession,
    analyze,
    chat_with_reader,
    evaluate_executives,
    stream_focus_group,
)
from readerpanel.engine.memory_store import JsonFileMemoryStore
from readerpanel.primitives.models import FocusGroupSession

setup_logging()
logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================
PROJECT_ID = "the-keeper"
MAX_LLM_CALLS = 120
QUESTIONS = [
    "Does the ending earn Mara's decision to stay?",
    "Is the lighthouse isolation cinematic enough to carry a feature?",
]

# =============================================================================
# Sample data
# =============================================================================
METADATA = DocumentMetadata(
    title="The Keeper",
    author="J. Doe",
    genre="Drama",
    format="feature",
    page_count=98,
)

SCRIPT = """\
FADE IN:

EXT. NORTH POINT LIGHTHOUSE - NIGHT

Rain sheets sideways. The beam sweeps a black, heaving sea.

INT. LIGHTHOUSE - STAIRWELL - CONTINUOUS

MARA (60s, weathered, unhurried) climbs the iron spiral, a kerosene lamp
in one hand and a sealed envelope in the other.

                    MARA
          Forty years and not one letter.
          Now two in a week.

She stops at the landing. Reads the name on the envelope. It isn't hers.

INT. LIGHTHOUSE - LAMP ROOM - MOMENTS LATER

The lens turns. Mara sets the envelope on the desk beside a radio that
has not worked since 1989. It crackles to life.

                    VOICE (V.O.)
          North Point, do you copy?

Mara stares at the radio. Slowly, she reaches for the handset.

                                                  CUT TO:
"""


async def _stream(session: PanelSession) -> FocusGroupSession:
    """Consume the streamed focus group, printing each message boundary."""
    async for event in stream_focus_group(session, questions=QUESTIONS):
        print_progress(event)
    return session.focus_group


async def main() -> None:
    parser = create_arg_parser("readerpanel E2E — 《The Keeper》全流程评审")
    args = parser.parse_args()

    memory_store = JsonFileMemoryStore(Path(args.memory_dir)) if args.memory_dir else None
    session = PanelSession(
        Document(text=SCRIPT, metadata=METADATA),
        PROJECT_ID,
        draft_number=args.draft,
        config_file=config_file_path(),
        max_llm_calls=MAX_LLM_CALLS,
        memory_store=memory_store,
        record_dir=args.record_dir,
    )

    print()
    print("─" * 60)
    print(f"  《{METADATA.title}》第 {args.draft} 稿 — 实时进度")
    print("─" * 60)

    try:
        deliverable = await analyze(session, on_progress=print_progress)
        print_deliverable_summary(deliverable, METADATA.title)

        if not args.no_focus_group:
            print_focus_group_summary(await _stream(session))

        evaluations = await evaluate_executives(session, on_progress=print_progress)
        print_executive_summary(evaluations)

        analyst_id = next(iter(deliverable.results))
        reply = await chat_with_reader(
            session, analyst_id, "What would you change first in the next draft?",
        )
        print(f"\n  [{session.personas[analyst_id].name}] {reply}")
    finally:
        await session.close()
        if session.router is not None:
            logger.info("LLM 调用统计: %s", session.router.budget.to_dict())


if __name__ == "__main__":
    asyncio.run(main())
