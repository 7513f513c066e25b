# recorder.py
# =============================================================================
# 焦点小组会话增量记录器 — 每条发言追加后立即写入 JSON 文件。
# / Incremental focus-group recorder: flushes JSON after every appended turn.
#
# 设计目标 / Design goals:
# 1. 动态写入：每条消息后立即刷盘，不等会话结束。
#    / Eager flush after every message, not at session end.
# 2. 崩溃安全：临时文件 + 原子重命名，任意时刻文件都是合法 JSON。
#    / Crash-safe: temp file + atomic rename; file is always valid JSON.
# 3. 中止保留：会话中止时保留已产生的发言，并记录到达的状态。
#    / Aborted sessions keep produced turns and record the state reached.
# =============================================================================

"""焦点小组会话记录器。 / Focus-group session recorder."""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from readerpanel.primitives.models import FocusGroupMessage, FocusGroupSession

logger = logging.getLogger(__name__)


class SessionRecorder:
    """焦点小组会话记录器。 / Focus-group session recorder.

    输出 JSON 结构 / Output JSON structure:
        {
            "meta": { session_id, project_id, draft_number, start_time,
                      end_time, elapsed_seconds, status, state, aborted },
            "questions": [ ... ],
            "messages": [ { sequence, speaker_type, speaker, content, ... }, ... ]
        }
    """

    def __init__(self, output_path: Path, session: FocusGroupSession):
        """初始化记录器，立即创建输出文件。 / Initialize and create the output file immediately."""
        self._path = Path(output_path)
        self._start_time = time.monotonic()
        self._data: Dict[str, Any] = {
            "meta": {
                "session_id": session.session_id,
                "project_id": session.project_id,
                "draft_number": session.draft_number,
                "start_time": datetime.now().isoformat(),
                "end_time": None,
                "elapsed_seconds": 0.0,
                "status": "running",
                "state": session.state,
                "aborted": False,
                "error": None,
            },
            "questions": list(session.questions),
            "messages": [],
        }
        self._flush()

    def record_message(self, message: FocusGroupMessage) -> None:
        self._data["messages"].append(message.to_dict())
        self._flush()

    def record_state(self, state: str) -> None:
        self._data["meta"]["state"] = state
        self._flush()

    def finalize(self, session: FocusGroupSession, error: Optional[str] = None) -> None:
        """写入最终元信息。 / Write final metadata."""
        elapsed = time.monotonic() - self._start_time
        meta = self._data["meta"]
        meta["end_time"] = datetime.now().isoformat()
        meta["elapsed_seconds"] = round(elapsed, 2)
        meta["state"] = session.state
        meta["aborted"] = session.aborted
        if error:
            meta["status"] = "failed"
            meta["error"] = error
        else:
            meta["status"] = "aborted" if session.aborted else "completed"
        self._flush()
        logger.info(
            "会话记录已完成: %s (%d 条发言, %.1fs, %s)",
            self._path, len(self._data["messages"]), elapsed, meta["status"],
        )

    @property
    def output_path(self) -> Path:
        return self._path

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def _flush(self) -> None:
        """先写临时文件再原子重命名。写入失败仅记录日志。
        / Temp file then atomic rename. Write failures are only logged.
        """
        try:
            if self._data["meta"]["status"] == "running":
                self._data["meta"]["elapsed_seconds"] = round(
                    time.monotonic() - self._start_time, 2,
                )
            content = json.dumps(self._data, ensure_ascii=False, indent=2, default=str)
            tmp_path = self._path.with_suffix(".json.tmp")
            tmp_path.write_text(content, encoding="utf-8")
            os.chmod(tmp_path, 0o600)
            tmp_path.replace(self._path)
        except Exception as e:
            logger.warning("会话记录写入失败（不影响会话流程）: %s", e)
