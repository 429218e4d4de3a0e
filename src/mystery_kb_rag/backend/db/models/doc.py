# src/mystery_kb_rag/backend/db/models/doc.py

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, TimestampMixin


class ScriptModel(Base, TimestampMixin):
    """
    [职责] 剧本：顶层聚合实体，文档与结构化实体通过 script_id 归属。
    [边界] 不存储文档内容；只存名称与简介。
    [上游关系] POST /scripts 创建；上传/入库流程写入 documents.script_id。
    [下游关系] 结构化检索按 script_id 过滤并回填 script_name；/scripts 列表统计 document_count。
    """

    __tablename__ = "scripts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="剧本ID（UUID字符串）",
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="剧本名称",  # docstring: 引用展示名（script_name）
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="剧本简介（可选）",
    )

    documents: Mapped[List["DocumentModel"]] = relationship(
        back_populates="script",
        lazy="selectin",
        order_by="DocumentModel.created_at",
    )


class DocumentModel(Base, TimestampMixin):
    """
    [职责] 已入库的源文档（PDF 等）；提供引用中的 document_name。
    [边界] 不存储原文；解析/分块由入库流程负责（不在本服务范围）。
    [上游关系] 入库流程写入；可选归属 ScriptModel。
    [下游关系] DocumentChunkModel 与 13 类实体通过 document_id 回溯 filename。
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="文档ID（UUID字符串）",
    )

    filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="原始文件名",  # docstring: 引用中的 document_name
    )

    storage_path: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="存储路径（可选）",
    )

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="uploaded",
        comment="入库状态（uploaded/parsing/chunking/embedding/completed/failed）",
    )

    page_count: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="页数（可选）",
    )

    script_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("scripts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="所属剧本ID（可选）",
    )

    script: Mapped[Optional[ScriptModel]] = relationship(back_populates="documents")


class DocumentChunkModel(Base):
    """
    [职责] 文档分块 + embedding 向量（JSON 数组），语义检索的数据源。
    [边界] 向量相似度在 ChunkRepo 中计算；本表不建向量索引。
    [上游关系] 入库流程写入 content/embedding/page 区间。
    [下游关系] ChunkRepo.vector_query 读取并计算余弦相似度。
    """

    __tablename__ = "document_chunks"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="分块ID（UUID字符串）",
    )

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="所属文档ID",
    )

    content: Mapped[str] = mapped_column(Text, nullable=False, comment="分块文本")

    embedding: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment="embedding 向量（float 数组）",  # docstring: 缺失时不参与语义检索
    )

    page_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="起始页码")
    page_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="结束页码")

    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="文档内分块序号",
    )
