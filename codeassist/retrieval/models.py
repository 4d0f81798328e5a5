"""
Retrieval 领域模型（Pydantic）。

用途：
- `RetrievalQuery` 是对外输入（边界校验）
- `ChunkSignals` 是 Generation Service 输出的 schema（semantic/functional/quality）
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from codeassist.storage.models import ChunkType
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import Complexity

QueryType = Literal["semantic", "syntactic", "hybrid"]
SignalSource = Literal["deterministic", "generation"]


class RetrievalFilters(BaseModel):
    language: str | None = None
    fileType: list[str] | None = None
    complexity: Complexity | None = None
    chunkType: list[ChunkType] | None = None
    excludeFiles: list[str] | None = None


class RetrievalQuery(BaseModel):
    query: str
    queryType: QueryType = "hybrid"
    filters: RetrievalFilters | None = None
    maxResults: int = Field(default=10, ge=1)
    contextWindow: int = Field(default=5, ge=0)
    includeMetadata: bool = True


class ChunkSignals(BaseModel):
    """单个 chunk 的外部相关性信号；缺失的项回退到 keywordOverlap。"""

    semantic: float | None = Field(default=None, ge=0, le=1)
    functional: float | None = Field(default=None, ge=0, le=1)
    quality: float | None = Field(default=None, ge=0, le=1)


class RetrievedChunk(BaseModel):
    chunk: CodeChunk
    relevanceScore: float = Field(ge=0, le=1)
    matchReason: str
    contextChunks: list[CodeChunk] | None = None


class SearchMetadata(BaseModel):
    queryProcessingTime: float
    indexVersion: int
    appliedFilters: list[str]
    semanticClusters: list[str]
    signalSource: SignalSource = "deterministic"


class RetrievalResult(BaseModel):
    chunks: list[RetrievedChunk] = Field(default_factory=list)
    totalResults: int = 0
    searchMetadata: SearchMetadata | None = None
    suggestions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
