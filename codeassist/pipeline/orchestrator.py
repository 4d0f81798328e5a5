"""
Assist Orchestrator（核心流程编排）。

关键思想：
- **流程由工程代码控制**：classify -> retrieve -> (generate) -> merge
- **生成服务只负责产出内容**：不可用/超时/取消时，确定性的部分（分类、检索、合并计划）照常返回

阶段：
- Step 1: Classify（规则表，非 AI）
- Step 2: Retrieve（最近提交的索引快照；没有索引时显式空结果）
- Step 3: Generate（仅代码类 intent；调用方已给出新内容时跳过）
- Step 4: Merge（需要合并且有新内容时）
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import anyio

from codeassist.config import IndexConfig
from codeassist.errors import parse_input
from codeassist.indexing.languages import infer_language_from_path
from codeassist.llm.generation import GenerationService
from codeassist.llm.generation import Ok
from codeassist.llm.generation import run_generation
from codeassist.merge.planner import plan_merge
from codeassist.pipeline.models import AssistRequest
from codeassist.pipeline.models import AssistResponse
from codeassist.pipeline.models import GeneratedCode
from codeassist.retrieval.engine import empty_result
from codeassist.retrieval.engine import retrieve
from codeassist.retrieval.models import RetrievalQuery
from codeassist.retrieval.models import RetrievalResult
from codeassist.retrieval.signals import retrieve_with_generation
from codeassist.routing.intent import classify
from codeassist.routing.intent import route_for
from codeassist.storage.index_store import ProjectIndexStore
from codeassist.storage.models import CodeChunk

logger = logging.getLogger(__name__)

MAX_CONTEXT_CHARS = 4000
MAX_EXISTING_CHARS = 8000
CODE_INTENTS = {"generate_code", "modify_code", "debug_code", "refactor_code"}

CODE_PROMPT = """Instruction: {prompt}

Target file: {file_name}

Current file content:
```
{existing_content}
```

{context}

Return the code to write as `code`. Only include the definitions that change or are new."""


@dataclass(frozen=True)
class AssistOrchestrator:
    """Orchestrator 运行时依赖集合。"""

    store: ProjectIndexStore
    generation: GenerationService | None = None
    settings: IndexConfig = field(default_factory=IndexConfig)
    use_relevance_signals: bool = False


def build_assist_orchestrator(
    store: ProjectIndexStore,
    generation: GenerationService | None = None,
    settings: IndexConfig | None = None,
) -> AssistOrchestrator:
    """创建 orchestrator；有生成服务时检索也使用外部相关性信号。"""
    return AssistOrchestrator(
        store=store,
        generation=generation,
        settings=settings or IndexConfig(),
        use_relevance_signals=generation is not None,
    )


async def run_assist(
    orchestrator: AssistOrchestrator,
    project_id: str,
    request: AssistRequest | Mapping[str, object],
    cancel_event: anyio.Event | None = None,
) -> AssistResponse:
    parsed = parse_input(AssistRequest, request)
    warnings: list[str] = []

    # 1) 分类 + 路由
    classification = classify(prompt=parsed.prompt, context=parsed.context)
    route = route_for(classification, context=parsed.context)

    # 2) 检索上下文
    retrieval: RetrievalResult | None = None
    if route.needsRetrieval:
        query = RetrievalQuery(query=parsed.prompt, maxResults=parsed.maxContextChunks, contextWindow=0)
        index = orchestrator.store.query(project_id)
        if index is None:
            retrieval = empty_result(query=query, suggestion="Index the project first")
            warnings.append(f"No index for project {project_id}; continuing without retrieved context")
        elif orchestrator.use_relevance_signals:
            retrieval = await retrieve_with_generation(
                index=index,
                query=query,
                generation=orchestrator.generation,
                timeout_seconds=orchestrator.settings.generation_timeout_seconds,
                max_concurrency=orchestrator.settings.generation_max_concurrency,
                cancel_event=cancel_event,
            )
        else:
            retrieval = retrieve(index=index, query=query)
        warnings.extend(retrieval.warnings)

    # 3) 生成（只对代码类 intent）
    generated = parsed.generatedContent
    if generated is None and route.needsGeneration and classification.primaryIntent in CODE_INTENTS:
        result = await run_generation(
            service=orchestrator.generation,
            prompt_template=CODE_PROMPT,
            context_fields={
                "prompt": parsed.prompt,
                "file_name": parsed.fileName or parsed.context.currentFileName or "untitled",
                "existing_content": (parsed.existingContent or "")[:MAX_EXISTING_CHARS],
                "context": format_context(chunks=[r.chunk for r in retrieval.chunks] if retrieval else []),
            },
            output_shape=GeneratedCode,
            timeout_seconds=orchestrator.settings.generation_timeout_seconds,
            cancel_event=cancel_event,
        )
        if isinstance(result, Ok):
            generated = result.value.code
        else:
            warnings.append(f"Code generation unavailable ({result.error.kind}); returning deterministic results only")

    # 4) 合并计划
    merge = None
    if route.needsMerge and generated is not None and parsed.existingContent is not None:
        file_path = parsed.fileName or parsed.context.currentFilePath or parsed.context.currentFileName or "untitled"
        merge = plan_merge(
            existing_content=parsed.existingContent,
            generated_content=generated,
            instruction_context=parsed.prompt,
            language=infer_language_from_path(path=file_path),
            file_path=file_path,
        )

    logger.info(
        f"Assist finished: project={project_id}, intent={classification.primaryIntent}, "
        f"retrieved={len(retrieval.chunks) if retrieval else 0}, merged={merge is not None}"
    )
    return AssistResponse(
        classification=classification,
        route=route,
        retrieval=retrieval,
        generatedContent=generated,
        merge=merge,
        warnings=warnings,
    )


def format_context(chunks: Sequence[CodeChunk]) -> str:
    if not chunks:
        return ""
    parts: list[str] = ["Related code:"]
    for chunk in chunks:
        name = chunk.functionName or chunk.chunkType
        header = f"- {chunk.filePath}::{name} ({chunk.lineRange.start}-{chunk.lineRange.end})"
        parts.append(header)
        parts.append(_truncate(text=chunk.content, max_chars=MAX_CONTEXT_CHARS))
    return "\n".join(parts)


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n...TRUNCATED..."
