# src/mystery_kb_rag/backend/utils/constants.py

"""
[职责] 集中定义默认常量与协议字段名（prompt/trace/timing/SSE/检索默认值），降低跨模块硬编码。
[边界] 不包含运行时可变配置；不读取环境变量；不依赖业务具体实现。
[上游关系] services/pipelines/api 在构建请求/响应/SSE 事件时引用这些稳定字段与默认值。
[下游关系] logging/SSE/HTTP 响应使用一致字段名以便排障与客户端解析。
"""

from __future__ import annotations


DEFAULT_PROMPT_NAME = "mystery_kb_grounded"  # docstring: 默认回答 prompt 名称
DEFAULT_PROMPT_VERSION = "v1"  # docstring: 默认 prompt 版本
INTENT_PROMPT_NAME = "mystery_kb_intent"  # docstring: 意图分类 prompt 名称

TRACE_ID_KEY = "trace_id"  # docstring: trace_id 字段
REQUEST_ID_KEY = "request_id"  # docstring: request_id 字段
SESSION_ID_KEY = "session_id"  # docstring: 会话ID 字段

TIMING_MS_KEY = "timing_ms"  # docstring: timing_ms 字段
TIMING_TOTAL_KEY = "total"  # docstring: timing_ms 的总耗时 key

STAGE_CLASSIFY = "classify"  # docstring: 意图分类阶段
STAGE_SEARCH = "search"  # docstring: 检索阶段（structured/semantic/hybrid）
STAGE_FUSE = "fuse"  # docstring: RRF 融合阶段
STAGE_GENERATE = "generate"  # docstring: 回答生成阶段

ERROR_KEY = "error"  # docstring: ErrorResponse 顶层字段

DEFAULT_RRF_K = 60  # docstring: RRF 平滑常数
DEFAULT_SEMANTIC_LIMIT = 10  # docstring: 语义检索返回上限
DEFAULT_SEMANTIC_THRESHOLD = 0.5  # docstring: 语义检索相似度阈值
DEFAULT_INTENT_TEMPERATURE = 0.0  # docstring: 意图分类温度
DEFAULT_ANSWER_TEMPERATURE = 0.3  # docstring: 回答生成温度

UNKNOWN_DOCUMENT_NAME = "unknown"  # docstring: 无法解析来源文档时的占位名称

SSE_MEDIA_TYPE = "text/event-stream"  # docstring: SSE Content-Type
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}  # docstring: SSE 响应头（Content-Type 由 StreamingResponse.media_type 提供）
