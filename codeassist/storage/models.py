"""
索引领域模型（Pydantic）。

说明：
- 对外字段名与枚举值保持稳定（camelCase），任何调用方（UI/CLI/其他服务）都能直接消费
- 枚举字段全部用 `Literal`，在每个边界上校验，下游只需要穷举处理
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ChunkType = Literal["function", "class", "interface", "component", "import", "config", "documentation", "test"]
Complexity = Literal["low", "medium", "high"]
IndexMode = Literal["create", "update", "refresh"]

CHUNK_TYPES: tuple[ChunkType, ...] = (
    "function",
    "class",
    "interface",
    "component",
    "import",
    "config",
    "documentation",
    "test",
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class LineRange(BaseModel):
    """1-based、闭区间的行范围。"""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> LineRange:
        if self.end < self.start:
            raise ValueError(f"lineRange.end ({self.end}) must be >= start ({self.start})")
        return self


class CodeChunk(BaseModel):
    """一个文件中连续、自包含的源码片段（函数/类/import 块等）。"""

    model_config = ConfigDict(frozen=True)

    id: str
    filePath: str
    fileName: str
    content: str
    language: str
    chunkType: ChunkType
    functionName: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    semanticSummary: str
    keywords: list[str] = Field(default_factory=list, max_length=10)
    complexity: Complexity
    lastModified: datetime = EPOCH
    lineRange: LineRange

    @field_validator("lastModified")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # naive 时间按 UTC 处理，排序时才能和 EPOCH 比较
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class FileNode(BaseModel):
    type: Literal["file", "folder"]
    children: list[str] | None = None
    language: str | None = None
    purpose: str | None = None


class SemanticCluster(BaseModel):
    clusterId: str
    theme: str
    chunkIds: list[str]
    keywords: list[str]


class ProjectIndex(BaseModel):
    """单个 project 的可检索状态；整体版本化，提交后不再修改。"""

    model_config = ConfigDict(frozen=True)

    projectId: str
    chunks: list[CodeChunk] = Field(default_factory=list)
    fileStructure: dict[str, FileNode] = Field(default_factory=dict)
    dependencyGraph: dict[str, list[str]] = Field(default_factory=dict)
    semanticClusters: list[SemanticCluster] = Field(default_factory=list)
    createdAt: datetime
    version: int = Field(ge=1)


class CorpusFile(BaseModel):
    """语料中的单个文件（path + content）。"""

    path: str = Field(min_length=1)
    content: str
    lastModified: datetime | None = None


class IndexRequest(BaseModel):
    """构建/刷新索引的请求：文件列表和/或文本形式的项目树。"""

    mode: IndexMode = "create"
    files: list[CorpusFile] = Field(default_factory=list)
    projectTree: str | None = None
    deletedPaths: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_paths(self) -> IndexRequest:
        paths = [f.path for f in self.files]
        if len(paths) != len(set(paths)):
            raise ValueError("files must not contain duplicate paths")
        return self


class IndexDiagnostic(BaseModel):
    """单文件抽取失败的诊断记录（索引构建继续进行）。"""

    path: str
    kind: Literal["PartialIndexFailure"] = "PartialIndexFailure"
    message: str


class IndexBuildReport(BaseModel):
    index: ProjectIndex
    indexedFiles: int
    diagnostics: list[IndexDiagnostic] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class IndexSummary(BaseModel):
    """对外返回的索引摘要（不带 chunk 正文）。"""

    projectId: str
    version: int
    createdAt: datetime
    totalChunks: int
    totalFiles: int
    languageDistribution: dict[str, int]
    clusters: list[str]
    diagnostics: list[IndexDiagnostic] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def summarize_index(
    index: ProjectIndex,
    diagnostics: list[IndexDiagnostic] | None = None,
    warnings: list[str] | None = None,
) -> IndexSummary:
    files: dict[str, str] = {}
    for chunk in index.chunks:
        files.setdefault(chunk.filePath, chunk.language)
    distribution: dict[str, int] = {}
    for language in files.values():
        distribution[language] = distribution.get(language, 0) + 1
    return IndexSummary(
        projectId=index.projectId,
        version=index.version,
        createdAt=index.createdAt,
        totalChunks=len(index.chunks),
        totalFiles=len(files),
        languageDistribution=dict(sorted(distribution.items())),
        clusters=[c.clusterId for c in index.semanticClusters],
        diagnostics=diagnostics or [],
        warnings=warnings or [],
    )
