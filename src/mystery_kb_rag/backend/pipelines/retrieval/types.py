# src/mystery_kb_rag/backend/pipelines/retrieval/types.py
"""
[职责] Retrieval types：检索/融合/生成各阶段共享的最小公共类型（RankedItem/Provenance/Citation/SearchOutcome/PipelineState）。
[边界] 仅定义数据结构与轻量转换；不包含检索逻辑；不依赖 DB。
[上游关系] structured/semantic/fusion/synthesizer/pipeline 等模块 import 使用。
[下游关系] HTTP 响应与 SSE sources 事件通过 to_dict()/to_wire() 输出。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

from .payloads import Payload


EntityKind = Literal[
    "trick",
    "character",
    "script_structure",
    "story_background",
    "script_format",
    "player_script",
    "clue",
    "reasoning_chain",
    "misdirection",
    "script_metadata",
    "game_mechanics",
    "narrative_technique",
    "emotional_design",
]  # docstring: 13 类结构化实体

ENTITY_KINDS: Tuple[str, ...] = (
    "trick",
    "character",
    "script_structure",
    "story_background",
    "script_format",
    "player_script",
    "clue",
    "reasoning_chain",
    "misdirection",
    "script_metadata",
    "game_mechanics",
    "narrative_technique",
    "emotional_design",
)

DOCUMENT_CHUNK_KIND = "document_chunk"  # docstring: 原文分块 kind（语义检索产出）

ItemKind = str  # docstring: EntityKind 或 document_chunk

QueryKind = Literal["structured", "semantic", "hybrid"]  # docstring: 查询类型


@dataclass(frozen=True)
class Provenance:
    """
    [职责] 来源信息：文档名（必有，无法解析时为 "unknown"）、剧本名与页码区间（可选）。
    [边界] 不校验 page_start <= page_end。
    """

    document_name: str
    script_name: Optional[str] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"document_name": self.document_name}
        if self.script_name:
            out["script_name"] = self.script_name
        if self.page_start is not None:
            out["page_start"] = self.page_start
        if self.page_end is not None:
            out["page_end"] = self.page_end
        return out


@dataclass(frozen=True)
class RankedItem:
    """
    [职责] 检索统一结果：id/kind/payload/来源/分数。
    [边界] 分数跨来源不可比（结构化=名次分，语义=相似度，融合=RRF）；id 唯一性由上游保证。
    [上游关系] structured_search/semantic_search 产出；fuse_rrf 重算分数。
    [下游关系] synthesizer 构建上下文与引用；HTTP 输出 items。
    """

    id: str
    entity_kind: ItemKind
    payload: Payload
    provenance: Provenance
    score: float

    def with_score(self, score: float) -> "RankedItem":
        return replace(self, score=float(score))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.entity_kind,
            "data": self.payload.to_fields(),
            "source": self.provenance.to_dict(),
            "score": self.score,
        }


@dataclass(frozen=True)
class Citation:
    """
    [职责] 回答引用：文档名 + 可选页码区间；按 (document_name, page_start, page_end) 去重。
    [边界] 线协议上缺失的页码字段直接省略。
    """

    document_name: str
    page_start: Optional[int] = None
    page_end: Optional[int] = None

    @property
    def key(self) -> Tuple[str, Optional[int], Optional[int]]:
        return (self.document_name, self.page_start, self.page_end)

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"document_name": self.document_name}
        if self.page_start is not None:
            out["page_start"] = self.page_start
        if self.page_end is not None:
            out["page_end"] = self.page_end
        return out

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Citation":
        return cls(
            document_name=str(data.get("document_name") or ""),
            page_start=data.get("page_start"),
            page_end=data.get("page_end"),
        )


@dataclass(frozen=True)
class SearchOutcome:
    """执行器输出：结构化与语义两路结果（未参与的一路为空列表）。"""

    structured: List[RankedItem] = field(default_factory=list)
    semantic: List[RankedItem] = field(default_factory=list)


@dataclass
class PipelineState:
    """
    [职责] 单次请求的累加状态：各阶段按序写入分类、检索、融合、回答与引用。
    [边界] 每个请求独立创建，从不跨请求共享。
    [上游关系] run_retrieval_pipeline / run_retrieval_stages 创建并填充。
    [下游关系] PipelineResult.state；SSE 边界读取 fused_results/history。
    """

    query: str
    session_id: Optional[str] = None
    classification: Optional[Any] = None  # IntentClassification
    structured_results: List[RankedItem] = field(default_factory=list)
    semantic_results: List[RankedItem] = field(default_factory=list)
    fused_results: List[RankedItem] = field(default_factory=list)
    answer: str = ""
    citations: List[Citation] = field(default_factory=list)
    history: List[Any] = field(default_factory=list)  # llama_index ChatMessage
