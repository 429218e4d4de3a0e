# src/mystery_kb_rag/backend/api/schemas_http/documents.py

"""
[职责] HTTP Documents Schema：文档列表（处理状态 + 分块数 + 所属剧本）与按剧本分组的响应合同。
[边界] 只读视图；不包含上传/解析语义。
[上游关系] 前端文档管理页。
[下游关系] routers/documents.py。
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import ScriptId


class DocumentListItem(BaseModel):
    id: str
    filename: str
    status: Optional[str] = None
    upload_date: Optional[datetime] = None  # docstring: documents.created_at
    page_count: Optional[int] = None
    chunk_count: int = 0
    script_id: Optional[ScriptId] = None
    script_name: Optional[str] = None


class DocumentListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")  # docstring: 与分组响应互斥，便于 Union 响应模型判别

    items: List[DocumentListItem] = Field(default_factory=list)
    total: int = 0


class ScriptRef(BaseModel):
    id: ScriptId
    name: str = ""


class DocumentGroup(BaseModel):
    """同一剧本下的文档；script 为 None 表示未归属剧本。"""

    script: Optional[ScriptRef] = None
    documents: List[DocumentListItem] = Field(default_factory=list)


class DocumentGroupsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    groups: List[DocumentGroup] = Field(default_factory=list)
    total: int = 0
