# playground/fusion_gate/test_fusion_gate.py

"""
[职责] fusion gate：锁定 RRF 融合的确定性、排序、共识累加、单侧恒等与截断行为。
[边界] 纯函数测试；不访问 DB/LLM。
[上游关系] backend/pipelines/retrieval/fusion.py。
[下游关系] pipeline.fuse 阶段与 /search hybrid 输出依赖此行为。
"""

from __future__ import annotations

from typing import List

import pytest

from mystery_kb_rag.backend.pipelines.retrieval.fusion import fuse_rrf, rrf_contribution
from mystery_kb_rag.backend.pipelines.retrieval.payloads import GenericPayload
from mystery_kb_rag.backend.pipelines.retrieval.types import Provenance, RankedItem


pytestmark = pytest.mark.fusion_gate


def _item(item_id: str, *, kind: str = "trick", score: float = 0.0) -> RankedItem:
    return RankedItem(
        id=item_id,
        entity_kind=kind,
        payload=GenericPayload(name=item_id),
        provenance=Provenance(document_name=f"{item_id}.pdf"),
        score=score,
    )


def _ids(items: List[RankedItem]) -> List[str]:
    return [i.id for i in items]


def test_consensus_item_ranks_first_with_summed_score() -> None:
    """结构化 [a, b] + 语义 [c, a]：a 得分 1/61 + 1/62 且排第一。"""
    fused = fuse_rrf([_item("a"), _item("b")], [_item("c"), _item("a")], k=60)

    assert fused[0].id == "a"
    assert fused[0].score == pytest.approx(1 / 61 + 1 / 62)
    assert fused[0].score == pytest.approx(0.03226, abs=1e-5)
    assert set(_ids(fused)) == {"a", "b", "c"}
    assert len(fused) == 3


def test_ties_keep_first_seen_order() -> None:
    """b（结构化名次 1）与 c（语义名次 0 -> 1/61）分数不同；同分项保持首次出现顺序。"""
    fused = fuse_rrf([_item("x"), _item("y")], [_item("z"), _item("w")], k=60)
    # x 与 z 同为 1/61，y 与 w 同为 1/62
    assert _ids(fused) == ["x", "z", "y", "w"]


def test_scores_are_non_increasing_and_ids_unique() -> None:
    structured = [_item(f"s{i}") for i in range(5)] + [_item("shared")]
    semantic = [_item("shared")] + [_item(f"v{i}") for i in range(5)]
    fused = fuse_rrf(structured, semantic)

    scores = [i.score for i in fused]
    assert scores == sorted(scores, reverse=True)
    assert len(_ids(fused)) == len(set(_ids(fused)))
    assert fused[0].id == "shared"


def test_one_sided_input_preserves_order_and_rescores() -> None:
    only = [_item("a", score=0.9), _item("b", score=0.8), _item("c", score=0.7)]
    fused = fuse_rrf(only, [], k=60)

    assert _ids(fused) == ["a", "b", "c"]
    assert [i.score for i in fused] == [rrf_contribution(r, 60) for r in range(3)]

    fused_semantic = fuse_rrf([], only, k=60)
    assert _ids(fused_semantic) == ["a", "b", "c"]


def test_limit_truncates_after_sorting() -> None:
    fused = fuse_rrf([_item("a"), _item("b")], [_item("b"), _item("c")], limit=1)
    assert _ids(fused) == ["b"]
    assert fuse_rrf([_item("a")], [], limit=0) == []
    assert _ids(fuse_rrf([_item("a")], [], limit=-1)) == ["a"]


def test_deterministic_and_inputs_untouched() -> None:
    structured = [_item("a", score=3.0), _item("b", score=2.0)]
    semantic = [_item("b", score=0.9), _item("c", score=0.8)]
    first = fuse_rrf(structured, semantic)
    second = fuse_rrf(structured, semantic)

    assert [(i.id, i.score) for i in first] == [(i.id, i.score) for i in second]
    assert [i.score for i in structured] == [3.0, 2.0]  # docstring: 原条目不可变


def test_first_occurrence_payload_is_kept() -> None:
    structured = [_item("dup", kind="trick")]
    semantic = [_item("dup", kind="document_chunk")]
    fused = fuse_rrf(structured, semantic)
    assert len(fused) == 1
    assert fused[0].entity_kind == "trick"


def test_namespaced_ids_do_not_coalesce() -> None:
    structured = [_item("1", kind="trick")]
    semantic = [_item("1", kind="document_chunk")]
    fused = fuse_rrf(structured, semantic, namespace_ids=True)
    assert [(i.entity_kind, i.id) for i in fused] == [("trick", "1"), ("document_chunk", "1")]


def test_empty_inputs_give_empty_output() -> None:
    assert fuse_rrf([], []) == []


@pytest.mark.parametrize("k", [1, 60])
def test_removing_id_from_either_list_strictly_lowers_its_score(k: int) -> None:
    """任一侧移除共识条目后，其融合分严格下降（对所有名次组合成立）。"""
    for s_rank in range(4):
        for v_rank in range(4):
            structured = [_item(f"s{i}") for i in range(4)]
            semantic = [_item(f"v{i}") for i in range(4)]
            structured[s_rank] = _item("shared")
            semantic[v_rank] = _item("shared")

            def score_of(fused: List[RankedItem]) -> float:
                return next(i.score for i in fused if i.id == "shared")

            both = score_of(fuse_rrf(structured, semantic, k=k))
            without_semantic = [i for i in semantic if i.id != "shared"]
            without_structured = [i for i in structured if i.id != "shared"]

            assert score_of(fuse_rrf(structured, without_semantic, k=k)) < both
            assert score_of(fuse_rrf(without_structured, semantic, k=k)) < both
