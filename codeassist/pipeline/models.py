from __future__ import annotations

from pydantic import BaseModel, Field

from codeassist.merge.models import MergeResult
from codeassist.retrieval.models import RetrievalResult
from codeassist.routing.models import ClassifierContext
from codeassist.routing.models import IntentClassification
from codeassist.routing.models import RouteDecision


class AssistRequest(BaseModel):
    """
    一次编辑器请求。

    - `existingContent`：当前文件内容（需要合并时必须给）
    - `generatedContent`：调用方已经拿到的新内容；给了就不再调用 Generation Service
    """

    prompt: str
    context: ClassifierContext = Field(default_factory=ClassifierContext)
    existingContent: str | None = None
    generatedContent: str | None = None
    fileName: str | None = None
    maxContextChunks: int = Field(default=5, ge=1, le=50)


class GeneratedCode(BaseModel):
    """Generation Service 的代码输出 schema。"""

    code: str


class AssistResponse(BaseModel):
    classification: IntentClassification
    route: RouteDecision
    retrieval: RetrievalResult | None = None
    generatedContent: str | None = None
    merge: MergeResult | None = None
    warnings: list[str] = Field(default_factory=list)
