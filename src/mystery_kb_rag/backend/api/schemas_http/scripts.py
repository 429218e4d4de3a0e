# src/mystery_kb_rag/backend/api/schemas_http/scripts.py

"""
[职责] HTTP Scripts Schema：剧本列表/创建/详情合同。
[边界] 不校验名称非空（由 router 返回统一 400 文案）。
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import ScriptId


class ScriptCreateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="")
    description: Optional[str] = Field(default=None)


class ScriptView(BaseModel):
    id: ScriptId
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class ScriptListItem(ScriptView):
    document_count: int = 0


class DocumentView(BaseModel):
    id: str
    filename: str
    status: Optional[str] = None
    page_count: Optional[int] = None
    created_at: Optional[datetime] = None


class ScriptDetail(ScriptView):
    documents: List[DocumentView] = Field(default_factory=list)


class ScriptListResponse(BaseModel):
    items: List[ScriptListItem] = Field(default_factory=list)
    total: int = 0
