# loader.py
# =============================================================================
# 人设发现与加载 — 分析员（readers/）与高管（executives/）。
#
# 每个人设是一个 Markdown 文件：YAML frontmatter 描述结构化字段，
# 正文为分析员的系统提示词（或高管的履历摘要）。
#
# 搜索顺序（同 id 先发现者胜出）：
#   1. 调用方传入的 search_paths
#   2. {cwd}/.readerpanel/personas
#   3. ~/.config/readerpanel/personas
#   4. 包内置人设
#
# 文件格式：
#   ---
#   id: reader-maya
#   order: 1
#   name: Maya Chen
#   display_name: The Optimist
#   weights: {premise: 1.0, ...}
#   ---
#   You are Maya Chen, ...
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from readerpanel.errors import (
    PERSONA_NOT_FOUND,
    PERSONA_SCHEMA_INVALID,
    PersonaValidationError,
)
from readerpanel.primitives.models import (
    SCORED_DIMENSIONS,
    AnalystPersona,
    ExecutiveProfile,
)

logger = logging.getLogger(__name__)

_BUILTIN_DIR = Path(__file__).parent


class PersonaLoader:
    """分析员与高管人设加载器。

    生命周期：discover -> load（结果按 order 排序，即默认发言顺序）
    """

    _DEFAULT_SEARCH_DIRS = (".readerpanel/personas",)
    _HOME_SEARCH_DIRS = (".config/readerpanel/personas",)

    def __init__(self, search_paths: Optional[List[Path]] = None) -> None:
        """初始化加载器。

        Args:
            search_paths: 额外的搜索路径，优先于默认路径与内置人设。
        """
        paths: List[Path] = list(search_paths or [])
        cwd = Path.cwd()
        paths.extend(cwd / d for d in self._DEFAULT_SEARCH_DIRS)
        home = Path.home()
        paths.extend(home / d for d in self._HOME_SEARCH_DIRS)
        paths.append(_BUILTIN_DIR)
        self._search_paths = paths

    # -------------------------------------------------------------------------
    # 公共接口
    # -------------------------------------------------------------------------

    def load_readers(self) -> Dict[str, AnalystPersona]:
        """加载全部分析员人设（按 order 排序）。"""
        personas = {}
        for fm, body, path in self._discover("readers"):
            persona = self._build_reader(fm, body, path)
            personas[persona.id] = persona
        if not personas:
            raise PersonaValidationError(PERSONA_NOT_FOUND, "未发现任何分析员人设")
        return personas

    def load_executives(self) -> Dict[str, ExecutiveProfile]:
        """加载全部高管人设（按 order 排序）。"""
        executives = {}
        for fm, body, path in self._discover("executives"):
            profile = self._build_executive(fm, body, path)
            executives[profile.id] = profile
        if not executives:
            raise PersonaValidationError(PERSONA_NOT_FOUND, "未发现任何高管人设")
        return executives

    # -------------------------------------------------------------------------
    # discover — 扫描 {search_path}/{kind}/*.md
    # -------------------------------------------------------------------------

    def _discover(self, kind: str) -> List[Tuple[Dict[str, Any], str, Path]]:
        found: Dict[str, Tuple[Dict[str, Any], str, Path]] = {}
        for search_dir in self._search_paths:
            kind_dir = search_dir / kind
            if not kind_dir.is_dir():
                logger.debug("搜索路径不存在，跳过: %s", kind_dir)
                continue

            for md in sorted(kind_dir.glob("*.md")):
                if md.name.startswith("."):
                    continue
                fm, body = parse_frontmatter(md)
                persona_id = fm.get("id")
                if not persona_id:
                    raise PersonaValidationError(
                        PERSONA_SCHEMA_INVALID, f"frontmatter 缺少 id 字段: {md}"
                    )
                if persona_id in found:
                    logger.debug(
                        "人设 '%s' 已发现于 %s，忽略重复: %s",
                        persona_id, found[persona_id][2], md,
                    )
                    continue
                found[persona_id] = (fm, body, md)
                logger.debug("发现人设: %s @ %s", persona_id, md)

        return sorted(found.values(), key=lambda entry: entry[0].get("order", 1000))

    # -------------------------------------------------------------------------
    # build — frontmatter -> 数据对象
    # -------------------------------------------------------------------------

    @staticmethod
    def _build_reader(fm: Dict[str, Any], body: str, path: Path) -> AnalystPersona:
        for key in ("name", "display_name"):
            if not fm.get(key):
                raise PersonaValidationError(
                    PERSONA_SCHEMA_INVALID, f"分析员人设缺少 {key} 字段: {path}"
                )
        if not body:
            raise PersonaValidationError(
                PERSONA_SCHEMA_INVALID, f"分析员人设缺少系统提示词正文: {path}"
            )

        raw_weights = fm.get("weights") or {}
        if not isinstance(raw_weights, dict):
            raise PersonaValidationError(
                PERSONA_SCHEMA_INVALID, f"weights 必须为字典: {path}"
            )
        try:
            weights = {dim: float(raw_weights.get(dim, 1.0)) for dim in SCORED_DIMENSIONS}
        except (TypeError, ValueError) as exc:
            raise PersonaValidationError(
                PERSONA_SCHEMA_INVALID, f"weights 含非数值项: {path}"
            ) from exc

        return AnalystPersona(
            id=str(fm["id"]),
            name=str(fm["name"]),
            display_name=str(fm["display_name"]),
            system_prompt=body,
            color=str(fm.get("color", "#8E8E93")),
            weights=weights,
            background=str(fm.get("background", "")).strip(),
            analytical_focus=[str(f) for f in fm.get("analytical_focus") or []],
        )

    @staticmethod
    def _build_executive(fm: Dict[str, Any], body: str, path: Path) -> ExecutiveProfile:
        for key in ("name", "title", "company"):
            if not fm.get(key):
                raise PersonaValidationError(
                    PERSONA_SCHEMA_INVALID, f"高管人设缺少 {key} 字段: {path}"
                )

        def _list(key: str) -> List[str]:
            return [str(v) for v in fm.get(key) or []]

        return ExecutiveProfile(
            id=str(fm["id"]),
            name=str(fm["name"]),
            title=str(fm["title"]),
            company=str(fm["company"]),
            track_record=body,
            company_type=str(fm.get("company_type", "studio")),
            filmography=_list("filmography"),
            evaluation_style=str(fm.get("evaluation_style", "")).strip(),
            priority_factors=_list("priority_factors"),
            deal_breakers=_list("deal_breakers"),
            recent_context=_list("recent_context"),
        )


def parse_frontmatter(path: Path) -> Tuple[Dict[str, Any], str]:
    """解析 Markdown 文件的 YAML frontmatter，返回 (元数据, 正文)。

    Raises:
        PersonaValidationError: 文件不存在或 frontmatter 无效。
    """
    if not path.is_file():
        raise PersonaValidationError(PERSONA_NOT_FOUND, f"人设文件不存在: {path}")

    text = path.read_text(encoding="utf-8")
    if not text.startswith("---"):
        raise PersonaValidationError(
            PERSONA_SCHEMA_INVALID,
            f"缺少 YAML frontmatter（文件必须以 --- 开头）: {path}",
        )

    second_sep = text.find("\n---", 3)
    if second_sep == -1:
        raise PersonaValidationError(
            PERSONA_SCHEMA_INVALID, f"YAML frontmatter 缺少结束标记 ---: {path}"
        )

    try:
        meta = yaml.safe_load(text[3:second_sep])
    except yaml.YAMLError as exc:
        raise PersonaValidationError(
            PERSONA_SCHEMA_INVALID, f"YAML 解析失败: {exc}"
        ) from exc

    if not isinstance(meta, dict):
        raise PersonaValidationError(
            PERSONA_SCHEMA_INVALID,
            f"YAML frontmatter 必须为字典，实际类型: {type(meta).__name__}",
        )

    body = text[second_sep + len("\n---"):].strip()
    return meta, body


_default_loader: Optional[PersonaLoader] = None


def default_readers() -> Dict[str, AnalystPersona]:
    """内置 + 用户目录中的分析员人设。"""
    return _loader().load_readers()


def default_executives() -> Dict[str, ExecutiveProfile]:
    """内置 + 用户目录中的高管人设。"""
    return _loader().load_executives()


def _loader() -> PersonaLoader:
    global _default_loader
    if _default_loader is None:
        _default_loader = PersonaLoader()
    return _default_loader
