# src/mystery_kb_rag/backend/pipelines/retrieval/fusion.py

"""
[职责] fusion：以 Reciprocal Rank Fusion 合并结构化与语义两路结果，按 id 去重并重算分数，稳定降序输出。
[边界] 纯函数、确定性；只依赖各列表内的名次，不假设两路分数同一量纲；不落库、不截断（除非显式 limit）。
[上游关系] executor 输出 SearchOutcome(structured, semantic)；pipeline 与 search_service 传入 k/limit。
[下游关系] synthesizer 消费融合列表构建上下文；HTTP 返回 items。
"""

from __future__ import annotations

from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from mystery_kb_rag.backend.pipelines.retrieval.types import RankedItem
from mystery_kb_rag.backend.utils.constants import DEFAULT_RRF_K


def rrf_contribution(rank: int, k: int = DEFAULT_RRF_K) -> float:
    """
    [职责] 单个名次的 RRF 贡献：1 / (k + r + 1)，r 为 0 起始名次。
    [边界] 不校验 k；k 为平滑常数（默认 60）。
    """
    return 1.0 / float(k + rank + 1)


def _item_key(item: RankedItem, namespace_ids: bool) -> Hashable:
    if namespace_ids:
        return (item.entity_kind, item.id)  # docstring: 不同实体表允许同 id
    return item.id


def fuse_rrf(
    structured: Sequence[RankedItem],
    semantic: Sequence[RankedItem],
    *,
    k: int = DEFAULT_RRF_K,
    limit: Optional[int] = None,
    namespace_ids: bool = False,
) -> List[RankedItem]:
    """
    [职责] RRF 融合：先扫描结构化列表，再扫描语义列表，按 key 累加贡献分。
    [边界] 保留首次出现的条目（仅替换分数）；同分保持首次出现顺序；
           limit>=0 时截断排序后的结果，负数 limit 忽略。
    [上游关系] pipeline.fuse 阶段 / search_service。
    [下游关系] FusedList（分数非增、按 key 去重）。
    """
    order: List[Hashable] = []
    first_seen: Dict[Hashable, RankedItem] = {}
    scores: Dict[Hashable, float] = {}

    for results in (structured, semantic):
        for rank, item in enumerate(results):
            key = _item_key(item, namespace_ids)
            contribution = rrf_contribution(rank, k)
            if key in scores:
                scores[key] += contribution  # docstring: 共识条目分数累加
            else:
                order.append(key)
                first_seen[key] = item
                scores[key] = contribution

    ranked: List[Tuple[Hashable, float]] = [(key, scores[key]) for key in order]
    ranked.sort(key=lambda pair: pair[1], reverse=True)  # docstring: sort 稳定，同分保持首次出现顺序

    fused = [first_seen[key].with_score(score) for key, score in ranked]
    if limit is not None and limit >= 0:
        fused = fused[:limit]
    return fused
