"""
Merge 领域模型（Pydantic）。

坐标约定：
- 行号 1-based；`insert` 的 `targetLineNumber` 表示新内容插入后所在的第一行
- `replace`/`update_section` 用 `startLineNumber`/`endLineNumber`（原文件坐标，闭区间）
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

MergeOperationType = Literal["insert", "replace", "append", "prepend", "update_section"]


class MergeOperation(BaseModel):
    type: MergeOperationType
    targetLineNumber: int | None = Field(default=None, ge=1)
    startLineNumber: int | None = Field(default=None, ge=1)
    endLineNumber: int | None = Field(default=None, ge=1)
    insertionPoint: str | None = None
    content: str | None = None
    reasoning: str


class MergeResult(BaseModel):
    mergedContent: str
    operations: list[MergeOperation] = Field(default_factory=list)
    summary: str
    confidence: float = Field(ge=0, le=1)
    warnings: list[str] = Field(default_factory=list)
    preservedSections: list[str] = Field(default_factory=list)


class MergeRequest(BaseModel):
    existingContent: str
    generatedContent: str
    fileName: str = Field(min_length=1)
    fileExtension: str
    instructionText: str | None = None
