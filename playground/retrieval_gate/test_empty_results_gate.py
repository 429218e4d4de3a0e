# playground/retrieval_gate/test_empty_results_gate.py

"""
[职责] empty results gate：锁定空结果回复模板与超范围判定。
[边界] 纯函数测试。
"""

from __future__ import annotations

import pytest

from mystery_kb_rag.backend.pipelines.retrieval.empty_results import (
    EMPTY_RESULTS_SUGGESTIONS,
    format_empty_results_response,
    is_out_of_scope,
)


pytestmark = pytest.mark.retrieval_gate


def test_empty_results_response_echoes_query_and_suggestions() -> None:
    text = format_empty_results_response("密室诡计")

    assert text.startswith("抱歉，当前知识库中没有找到与您问题相关的信息。")
    assert '您的查询："密室诡计"' in text
    for i, suggestion in enumerate(EMPTY_RESULTS_SUGGESTIONS, start=1):
        assert f"{i}. {suggestion}" in text
    assert len(EMPTY_RESULTS_SUGGESTIONS) == 4


@pytest.mark.parametrize(
    "answer",
    [
        "抱歉，没有相关信息。",
        "知识库中没有提到该角色。",
        "这个问题超出了知识库的范围",
        "目前没有足够的信息来判断凶手",
        "该剧本不在当前知识库中",
        "未找到相关内容",
        "",
        "   ",
    ],
)
def test_out_of_scope_answers(answer: str) -> None:
    assert is_out_of_scope(answer) is True


def test_grounded_answer_is_in_scope() -> None:
    assert is_out_of_scope("凶手利用冰锥制造了密室 [来源: 雪夜, 3]") is False
