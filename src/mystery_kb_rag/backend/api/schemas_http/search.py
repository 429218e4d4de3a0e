# src/mystery_kb_rag/backend/api/schemas_http/search.py

"""
[职责] HTTP Search Schema：/search 请求（自然语言 query 与用户侧过滤名）与响应合同。
[边界] 过滤名 -> 实体过滤变体的映射不在此处（search_service.map_search_filters）。
[上游关系] 前端检索页发起请求。
[下游关系] routers/search.py。
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import ResultItemView, ScriptId


class SearchFiltersIn(BaseModel):
    """用户侧过滤条件（全部可选；至少一个非空时视为提供了 filters）。"""

    model_config = ConfigDict(extra="ignore")

    trick_type: Optional[str] = None
    character_identity: Optional[str] = None
    era: Optional[str] = None
    act_count: Optional[int] = None
    clue_type: Optional[str] = None
    misdirection_type: Optional[str] = None
    play_type: Optional[str] = None
    narrative_structure_type: Optional[str] = None
    player_count: Optional[int] = None
    script_id: Optional[ScriptId] = None


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: Optional[str] = Field(default=None)  # docstring: 自然语言查询
    filters: Optional[SearchFiltersIn] = Field(default=None)  # docstring: 结构化过滤


class SearchResponse(BaseModel):
    items: List[ResultItemView] = Field(default_factory=list)
    total: int = 0
    message: Optional[str] = None  # docstring: 空结果时的调整建议
