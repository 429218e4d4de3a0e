# src/mystery_kb_rag/backend/pipelines/retrieval/empty_results.py

"""
[职责] 空结果与超范围信号：融合结果为空时的固定回复模板；判断回答是否表达“知识库无相关信息”。
[边界] 纯函数；is_out_of_scope 只作为元数据上报，不参与流程控制。
[上游关系] run_retrieval_pipeline（空结果分支 / out_of_scope 元数据）。
[下游关系] PipelineResult.answer；/query 响应 out_of_scope 字段。
"""

from __future__ import annotations

import re
from typing import Pattern, Tuple


EMPTY_RESULTS_SUGGESTIONS: Tuple[str, ...] = (
    "尝试使用不同的关键词或更通用的描述",
    "检查是否有拼写错误",
    "尝试缩小查询范围，例如指定具体的剧本类型或诡计类型",
    "使用结构化检索条件进行精确筛选",
)

OUT_OF_SCOPE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"没有相关信息",
        r"没有找到相关",
        r"知识库中没有",
        r"无法回答",
        r"超出.*范围",
        r"没有足够的信息",
        r"不在.*知识库",
        r"无相关信息",
        r"未找到相关",
    )
)


def format_empty_results_response(query: str) -> str:
    """空结果回复：固定前缀 + 原始查询回显 + 四条建议。"""
    suggestions = "\n".join(f"{i}. {s}" for i, s in enumerate(EMPTY_RESULTS_SUGGESTIONS, start=1))
    return (
        "抱歉，当前知识库中没有找到与您问题相关的信息。\n\n"
        f"您的查询：\"{query}\"\n\n"
        "建议您：\n"
        f"{suggestions}"
    )


def is_out_of_scope(answer: str) -> bool:
    """
    [职责] 判断回答是否表示知识库无相关信息。
    [边界] 空白回答视为超范围；任一固定模式命中即为 True。
    """
    if not answer or not answer.strip():
        return True
    return any(p.search(answer) for p in OUT_OF_SCOPE_PATTERNS)
