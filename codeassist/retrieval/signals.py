from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence

import anyio

from codeassist.errors import parse_input
from codeassist.indexing.chunker import tokenize
from codeassist.llm.generation import GenerationResult
from codeassist.llm.generation import GenerationService
from codeassist.llm.generation import Ok
from codeassist.llm.generation import run_generation
from codeassist.retrieval.engine import filter_chunks
from codeassist.retrieval.engine import matched_query_tokens
from codeassist.retrieval.engine import retrieve
from codeassist.retrieval.models import ChunkSignals
from codeassist.retrieval.models import RetrievalFilters
from codeassist.retrieval.models import RetrievalQuery
from codeassist.retrieval.models import RetrievalResult
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import ProjectIndex

logger = logging.getLogger(__name__)

SIGNAL_CANDIDATE_LIMIT = 20
PROMPT_CONTENT_CHARS = 3000

SIGNALS_PROMPT = """Rate how well this code chunk answers the query.

QUERY: "{query}"

File: {file_path}
Type: {chunk_type}
Summary: {summary}

```{language}
{content}
```

Return three scores between 0 and 1:
- semantic: how closely the code's meaning matches the query
- functional: how directly the code implements what the query asks for
- quality: readability and completeness of the code"""


async def collect_relevance_signals(
    chunks: Sequence[CodeChunk],
    query: str,
    generation: GenerationService | None,
    timeout_seconds: float,
    max_concurrency: int = 4,
    cancel_event: anyio.Event | None = None,
) -> tuple[dict[str, ChunkSignals], list[str]]:
    """
    对每个候选 chunk 并发请求外部信号。

    - 每个调用独立超时/取消；全部结束后再合并
    - 失败的 chunk 不出现在返回的 dict 里（打分时回退到 keywordOverlap）
    """
    if generation is None or not chunks:
        return {}, []

    limiter = anyio.CapacityLimiter(max_concurrency)
    results: list[GenerationResult | None] = [None] * len(chunks)

    async def _rate(idx: int, chunk: CodeChunk) -> None:
        async with limiter:
            results[idx] = await run_generation(
                service=generation,
                prompt_template=SIGNALS_PROMPT,
                context_fields={
                    "query": query,
                    "file_path": chunk.filePath,
                    "chunk_type": chunk.chunkType,
                    "summary": chunk.semanticSummary,
                    "language": chunk.language,
                    "content": chunk.content[:PROMPT_CONTENT_CHARS],
                },
                output_shape=ChunkSignals,
                timeout_seconds=timeout_seconds,
                cancel_event=cancel_event,
            )

    async with anyio.create_task_group() as tg:
        for idx, chunk in enumerate(chunks):
            tg.start_soon(_rate, idx, chunk)

    signals: dict[str, ChunkSignals] = {}
    failures: Counter[str] = Counter()
    for chunk, result in zip(chunks, results):
        if isinstance(result, Ok):
            signals[chunk.id] = result.value
            continue
        failures[result.error.kind if result is not None else "cancelled"] += 1

    warnings = [
        f"Relevance signals fell back to keyword overlap for {count} chunk(s): {kind}"
        for kind, count in sorted(failures.items())
    ]
    logger.info(f"Relevance signals: requested={len(chunks)}, received={len(signals)}")
    return signals, warnings


async def retrieve_with_generation(
    index: ProjectIndex,
    query: RetrievalQuery | Mapping[str, object],
    generation: GenerationService | None,
    timeout_seconds: float,
    max_concurrency: int = 4,
    cancel_event: anyio.Event | None = None,
) -> RetrievalResult:
    """先按关键字挑候选，再取外部信号，最后统一走确定性的 `retrieve`。"""
    parsed = parse_input(RetrievalQuery, query)
    if generation is None or parsed.queryType == "syntactic":
        return retrieve(index=index, query=parsed)

    candidates = signal_candidates(index=index, query=parsed)
    signals, warnings = await collect_relevance_signals(
        chunks=candidates,
        query=parsed.query,
        generation=generation,
        timeout_seconds=timeout_seconds,
        max_concurrency=max_concurrency,
        cancel_event=cancel_event,
    )
    result = retrieve(index=index, query=parsed, signals=signals)
    if not warnings:
        return result
    return result.model_copy(update={"warnings": result.warnings + warnings})


def signal_candidates(index: ProjectIndex, query: RetrievalQuery) -> list[CodeChunk]:
    """过滤后按关键字命中数排序（稳定），取前 `SIGNAL_CANDIDATE_LIMIT` 个。"""
    filtered = filter_chunks(chunks=index.chunks, filters=query.filters or RetrievalFilters())
    tokens = list(dict.fromkeys(tokenize(query.query)))
    ranked = sorted(filtered, key=lambda chunk: -len(matched_query_tokens(query_tokens=tokens, chunk=chunk)))
    return ranked[:SIGNAL_CANDIDATE_LIMIT]
