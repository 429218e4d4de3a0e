# src/mystery_kb_rag/backend/api/routers/health.py

"""
[职责] Health Router：提供服务健康检查（DB）与版本摘要。
[边界] 不执行业务逻辑；不触发 pipeline；不探测模型服务。
[上游关系] 运维/监控系统调用健康检查接口。
[下游关系] 依赖 DB 会话执行轻量检查。
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.api.deps import get_session


router = APIRouter(prefix="/health", tags=["health"])  # docstring: health 路由前缀


@router.get("")
async def health_check(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    """
    [职责] 检测 DB 可用性并返回健康摘要。
    [边界] 只做轻量探测；DB 异常时 status=degraded（HTTP 仍为 200）。
    """
    status = "ok"  # docstring: 默认健康状态
    db_status: Dict[str, Any] = {"ok": True}  # docstring: DB 健康容器

    try:
        await session.execute(text("SELECT 1"))  # docstring: DB ping（最小读）
    except Exception as exc:
        db_status["ok"] = False
        db_status["error"] = f"{exc.__class__.__name__}: {exc}"  # docstring: 记录 DB 错误摘要
        status = "degraded"

    return {
        "status": status,
        "db": db_status,
        "version": {"api": "v1"},
    }  # docstring: 健康检查响应
