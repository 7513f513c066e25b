# memory_store.py
# =============================================================================
# 记忆持久化协作者 — 只依赖两种操作形态：
#   upsert-by-(analyst, project, draft) 与 append-items。
# / Memory persistence collaborator. The engines depend on two operation
#   shapes only: upsert by (analyst, project, draft) and append items.
#
# 提供两种实现 / Two implementations:
#   - InMemoryMemoryStore：进程内字典，测试与单次运行使用
#   - JsonFileMemoryStore：每个项目一个 JSON 文件，临时文件 + 原子重命名
# =============================================================================

"""记忆存储。 / Memory stores."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from readerpanel.primitives.models import MemoryItem, ReaderMemory

logger = logging.getLogger(__name__)

MemoryKey = Tuple[str, str, int]


def _copy(memory: ReaderMemory) -> ReaderMemory:
    return ReaderMemory.from_dict(memory.to_dict())


class MemoryStore:
    """存储协作者接口。 / Storage collaborator interface."""

    async def get(
        self, analyst_id: str, project_id: str, draft_number: int,
    ) -> Optional[ReaderMemory]:
        raise NotImplementedError

    async def upsert(self, memory: ReaderMemory) -> ReaderMemory:
        """按 (analyst, project, draft) 插入或替换；重复写入保留原 memory_id。
        / Insert or replace by key; re-writes keep the original memory_id.
        """
        raise NotImplementedError

    async def append_items(self, memory_id: str, items: Sequence[MemoryItem]) -> None:
        raise NotImplementedError

    async def get_items(self, memory_id: str) -> List[MemoryItem]:
        raise NotImplementedError

    async def list_analysts(self, project_id: str) -> List[str]:
        """项目中出现过记忆的分析员 id（按首次出现排序）。"""
        raise NotImplementedError


class InMemoryMemoryStore(MemoryStore):
    """进程内存储。读写均复制，调用方无法绕过 upsert 修改已存记录。
    / In-process store; reads and writes copy so callers cannot mutate stored records.
    """

    def __init__(self) -> None:
        self._memories: Dict[MemoryKey, ReaderMemory] = {}
        self._items: Dict[str, List[MemoryItem]] = {}

    async def get(self, analyst_id, project_id, draft_number):
        memory = self._memories.get((analyst_id, project_id, draft_number))
        return _copy(memory) if memory is not None else None

    async def upsert(self, memory):
        existing = self._memories.get(memory.key)
        stored = _copy(memory)
        if existing is not None:
            stored.memory_id = existing.memory_id
        self._memories[memory.key] = stored
        return _copy(stored)

    async def append_items(self, memory_id, items):
        self._items.setdefault(memory_id, []).extend(items)

    async def get_items(self, memory_id):
        return list(self._items.get(memory_id, []))

    async def list_analysts(self, project_id):
        seen: List[str] = []
        for analyst_id, pid, _ in self._memories:
            if pid == project_id and analyst_id not in seen:
                seen.append(analyst_id)
        return seen


class JsonFileMemoryStore(MemoryStore):
    """每个项目一个 JSON 文件：{"memories": [...], "items": {memory_id: [...]}}。

    写入使用「先写临时文件 -> 原子重命名」，文件在任意时刻都是合法 JSON。
    读-改-写之间没有挂起点，同一事件循环内的并发写入不会交错。
    / Temp file + atomic rename keeps the file valid JSON at all times. There
      is no suspension point between read and write, so writes from one event
      loop never interleave.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, project_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", project_id) or "_"
        return self._dir / f"{safe}.json"

    def _load(self, project_id: str) -> Dict[str, Any]:
        path = self._path(project_id)
        if not path.is_file():
            return {"memories": [], "items": {}}
        return json.loads(path.read_text(encoding="utf-8"))

    def _save(self, project_id: str, data: Dict[str, Any]) -> None:
        path = self._path(project_id)
        content = json.dumps(data, ensure_ascii=False, indent=2)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)

    def _find_project(self, memory_id: str) -> Optional[str]:
        for path in sorted(self._dir.glob("*.json")):
            data = json.loads(path.read_text(encoding="utf-8"))
            for record in data.get("memories", []):
                if record.get("memory_id") == memory_id:
                    return record["project_id"]
        return None

    async def get(self, analyst_id, project_id, draft_number):
        for record in self._load(project_id)["memories"]:
            if (record["analyst_id"], record["draft_number"]) == (analyst_id, draft_number):
                return ReaderMemory.from_dict(record)
        return None

    async def upsert(self, memory):
        data = self._load(memory.project_id)
        stored = _copy(memory)
        records = data["memories"]
        for i, record in enumerate(records):
            if (record["analyst_id"], record["draft_number"]) == (
                memory.analyst_id, memory.draft_number,
            ):
                stored.memory_id = record["memory_id"]
                records[i] = stored.to_dict()
                break
        else:
            records.append(stored.to_dict())
        self._save(memory.project_id, data)
        return _copy(stored)

    async def append_items(self, memory_id, items):
        project_id = self._find_project(memory_id)
        if project_id is None:
            raise KeyError(f"unknown memory id: {memory_id}")
        data = self._load(project_id)
        data["items"].setdefault(memory_id, []).extend(asdict(item) for item in items)
        self._save(project_id, data)

    async def get_items(self, memory_id):
        project_id = self._find_project(memory_id)
        if project_id is None:
            return []
        raw = self._load(project_id)["items"].get(memory_id, [])
        return [MemoryItem(**item) for item in raw]

    async def list_analysts(self, project_id):
        seen: List[str] = []
        for record in self._load(project_id)["memories"]:
            if record["analyst_id"] not in seen:
                seen.append(record["analyst_id"])
        return seen
