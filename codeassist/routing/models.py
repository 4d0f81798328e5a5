"""
Intent 路由领域模型（Pydantic）。

说明：
- 所有枚举字段都是 `Literal`：下游按 variant 穷举处理，不在字符串上做分支猜测
- `ClassifyRequest` 是对外输入；`IntentClassification`/`RouteDecision` 是输出
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

PrimaryIntent = Literal[
    "generate_code",
    "modify_code",
    "suggest_filename",
    "file_operation",
    "ask_question",
    "explain_code",
    "debug_code",
    "refactor_code",
]
ToolName = Literal[
    "code_generator",
    "file_operations",
    "filename_suggester",
    "general_assistant",
    "code_modifier",
    "code_explainer",
]
Priority = Literal["high", "medium", "low"]
OutputType = Literal[
    "code_content",
    "file_suggestion",
    "operation_confirmation",
    "explanation_text",
    "filename_suggestions",
]


class ClassifierContext(BaseModel):
    """编辑器当前状态（附件、当前文件等）。"""

    hasAttachedFiles: bool = False
    attachedFilesInfo: str | None = None
    currentFileName: str | None = None
    currentFilePath: str | None = None
    hasFileContent: bool = False


class ClassifyRequest(BaseModel):
    prompt: str
    context: ClassifierContext = Field(default_factory=ClassifierContext)


class SubIntent(BaseModel):
    operation: str | None = None
    target: str | None = None
    context: str | None = None


class RoutingInfo(BaseModel):
    toolToCall: ToolName
    priority: Priority
    requiresUserConfirmation: bool
    expectedOutputType: OutputType


class PromptAnalysis(BaseModel):
    keywords: list[str] = Field(default_factory=list, max_length=10)
    actionVerbs: list[str] = Field(default_factory=list)
    programmingLanguage: str | None = None
    fileType: str | None = None
    domainContext: str | None = None


class IntentClassification(BaseModel):
    primaryIntent: PrimaryIntent
    confidence: float = Field(ge=0, le=1)
    subIntent: SubIntent
    routingInfo: RoutingInfo
    analysis: PromptAnalysis


class RouteDecision(BaseModel):
    """一次请求需要走哪些阶段（检索 / 外部生成 / 合并）。"""

    needsRetrieval: bool
    needsGeneration: bool
    needsMerge: bool
