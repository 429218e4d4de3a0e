# src/mystery_kb_rag/backend/db/repo/__init__.py

"""
[职责] db.repo 聚合导出：集中暴露仓储（Repo）对象，供 pipelines/services 调用。
[边界] 仅做导入与 __all__ 暴露；不包含业务编排。
[上游关系] 依赖各 repo 模块（entity/chunk/script/session）。
[下游关系] services 与检索适配器通过本模块统一导入仓储能力；测试用例可直接引用。
"""

from __future__ import annotations

from .entity_repo import EntityRepo, EntityRow
from .chunk_repo import ChunkRepo, ChunkMatch
from .script_repo import ScriptRepo
from .session_repo import ChatSessionRepo

__all__ = [
    "EntityRepo",
    "EntityRow",
    "ChunkRepo",
    "ChunkMatch",
    "ScriptRepo",
    "ChatSessionRepo",
]
