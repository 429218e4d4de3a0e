# src/mystery_kb_rag/backend/api/schemas_http/query.py

"""
[职责] HTTP Query Schema：/query 阻塞问答的请求与响应合同。
[边界] 不暴露 PipelineState 全量；out_of_scope 仅为元数据。
[上游关系] 外部调用方 / 评测脚本。
[下游关系] routers/query.py。
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import CitationView, ResultItemView, SessionId, TraceId


class QueryRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = Field(default="")
    session_id: Optional[SessionId] = Field(default=None)


class QueryResponse(BaseModel):
    answer: str
    citations: List[CitationView] = Field(default_factory=list)
    items: List[ResultItemView] = Field(default_factory=list)  # docstring: 融合后的检索结果
    query_kind: Optional[str] = None
    out_of_scope: bool = False
    timing_ms: Dict[str, float] = Field(default_factory=dict)
    trace_id: TraceId
