"""
Retrieval Engine：过滤 + 多因子打分 + 排序 + 上下文窗口。

打分公式：
- `relevance = 0.4·semantic + 0.3·keywordOverlap + 0.2·functional + 0.1·quality`
- `keywordOverlap` 是确定性的：query token 中命中 chunk keywords 的比例
- 外部信号缺失时一律取 `keywordOverlap`（没有 Generation Service 时分数等于 keywordOverlap）

排序（完全确定）：score 降序 → lastModified 降序 → filePath 升序 → lineRange.start 升序
"""

from __future__ import annotations

import fnmatch
import logging
import posixpath
import time
from collections.abc import Mapping, Sequence

from codeassist.errors import parse_input
from codeassist.indexing.chunker import tokenize
from codeassist.retrieval.models import ChunkSignals
from codeassist.retrieval.models import RetrievalFilters
from codeassist.retrieval.models import RetrievalQuery
from codeassist.retrieval.models import RetrievalResult
from codeassist.retrieval.models import RetrievedChunk
from codeassist.retrieval.models import SearchMetadata
from codeassist.storage.index_store import ProjectIndexStore
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import ProjectIndex

logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.4
KEYWORD_WEIGHT = 0.3
FUNCTIONAL_WEIGHT = 0.2
QUALITY_WEIGHT = 0.1
# semantic 与 keyword 相差超过该值时，semantic 取二者平均
DISAGREEMENT_THRESHOLD = 0.5
MAX_SUGGESTIONS = 3


def retrieve(
    index: ProjectIndex,
    query: RetrievalQuery | Mapping[str, object],
    signals: Mapping[str, ChunkSignals] | None = None,
) -> RetrievalResult:
    """
    对一个已提交的索引快照做检索（纯函数，不修改 index）。

    - 输入：索引快照、查询、（可选）外部信号 `chunkId -> ChunkSignals`
    - 输出：`RetrievalResult`；`totalResults` 是截断前的命中数
    """
    started = time.perf_counter()
    parsed = parse_input(RetrievalQuery, query)
    filters = parsed.filters or RetrievalFilters()

    # 1) 硬过滤
    candidates = filter_chunks(chunks=index.chunks, filters=filters)

    # 2) 打分（syntactic 查询只看关键字）
    active_signals = signals if signals and parsed.queryType != "syntactic" else {}
    query_tokens = _unique_tokens(parsed.query)
    scored: list[tuple[float, str, CodeChunk]] = []
    for chunk in candidates:
        matched = matched_query_tokens(query_tokens=query_tokens, chunk=chunk)
        overlap = len(matched) / len(query_tokens) if query_tokens else 0.0
        chunk_signals = active_signals.get(chunk.id)
        score = combine_score(keyword_overlap=overlap, signals=chunk_signals, query_type=parsed.queryType)
        if score <= 0:
            continue
        scored.append((score, _match_reason(matched=matched, total=len(query_tokens), signals=chunk_signals), chunk))

    # 3) 排序 + 截断
    scored.sort(key=lambda item: (item[2].filePath, item[2].lineRange.start))
    scored.sort(key=lambda item: (item[0], item[2].lastModified), reverse=True)
    top = scored[: parsed.maxResults]

    # 4) 上下文窗口
    by_file = _chunks_by_file(index=index)
    results = [
        RetrievedChunk(
            chunk=chunk,
            relevanceScore=score,
            matchReason=reason,
            contextChunks=neighbours(by_file=by_file, chunk=chunk, window=parsed.contextWindow) or None,
        )
        for score, reason, chunk in top
    ]

    metadata: SearchMetadata | None = None
    if parsed.includeMetadata:
        metadata = SearchMetadata(
            queryProcessingTime=round((time.perf_counter() - started) * 1000, 3),
            indexVersion=index.version,
            appliedFilters=describe_filters(filters=filters),
            semanticClusters=_clusters_for(index=index, chunks=[r.chunk for r in results]),
            signalSource="generation" if active_signals else "deterministic",
        )

    logger.info(
        f"Retrieval: project={index.projectId}, version={index.version}, "
        f"candidates={len(candidates)}, matched={len(scored)}, returned={len(results)}"
    )
    return RetrievalResult(
        chunks=results,
        totalResults=len(scored),
        searchMetadata=metadata,
        suggestions=_suggestions(
            index=index,
            filters=filters,
            candidates=candidates,
            results=results,
            query_tokens=query_tokens,
        ),
    )


def retrieve_for_project(
    store: ProjectIndexStore,
    project_id: str,
    query: RetrievalQuery | Mapping[str, object],
    signals: Mapping[str, ChunkSignals] | None = None,
) -> RetrievalResult:
    """从 store 读最近提交的快照；project 没有索引时返回显式的空结果而不是抛错。"""
    parsed = parse_input(RetrievalQuery, query)
    index = store.query(project_id)
    if index is None:
        logger.warning(f"Retrieval against missing index: project={project_id}")
        return empty_result(query=parsed, suggestion="Index the project first")
    return retrieve(index=index, query=parsed, signals=signals)


def empty_result(query: RetrievalQuery, suggestion: str) -> RetrievalResult:
    metadata = None
    if query.includeMetadata:
        metadata = SearchMetadata(
            queryProcessingTime=0.0,
            indexVersion=0,
            appliedFilters=describe_filters(filters=query.filters or RetrievalFilters()),
            semanticClusters=[],
        )
    return RetrievalResult(chunks=[], totalResults=0, searchMetadata=metadata, suggestions=[suggestion])


def filter_chunks(chunks: Sequence[CodeChunk], filters: RetrievalFilters) -> list[CodeChunk]:
    return [chunk for chunk in chunks if passes_filters(chunk=chunk, filters=filters)]


def passes_filters(chunk: CodeChunk, filters: RetrievalFilters) -> bool:
    if filters.language is not None and chunk.language.lower() != filters.language.lower():
        return False
    if filters.chunkType is not None and chunk.chunkType not in filters.chunkType:
        return False
    if filters.complexity is not None and chunk.complexity != filters.complexity:
        return False
    if filters.fileType is not None:
        allowed = {_normalize_extension(ext) for ext in filters.fileType}
        if _normalize_extension(posixpath.splitext(chunk.filePath)[1]) not in allowed:
            return False
    if filters.excludeFiles:
        for pattern in filters.excludeFiles:
            if chunk.filePath == pattern or fnmatch.fnmatchcase(chunk.filePath, pattern):
                return False
    return True


def matched_query_tokens(query_tokens: Sequence[str], chunk: CodeChunk) -> list[str]:
    """query token 等于某个 keyword，或是某个 keyword 的前缀，都算命中。"""
    keywords = set(chunk.keywords)
    matched: list[str] = []
    for token in query_tokens:
        if token in keywords or any(keyword.startswith(token) for keyword in keywords):
            matched.append(token)
    return matched


def combine_score(keyword_overlap: float, signals: ChunkSignals | None, query_type: str = "hybrid") -> float:
    semantic = keyword_overlap
    functional = keyword_overlap
    quality = keyword_overlap
    if signals is not None:
        if signals.semantic is not None:
            semantic = signals.semantic
            if query_type == "hybrid" and abs(semantic - keyword_overlap) > DISAGREEMENT_THRESHOLD:
                semantic = (semantic + keyword_overlap) / 2
        if signals.functional is not None:
            functional = signals.functional
        if signals.quality is not None:
            quality = signals.quality
    score = (
        SEMANTIC_WEIGHT * semantic
        + KEYWORD_WEIGHT * keyword_overlap
        + FUNCTIONAL_WEIGHT * functional
        + QUALITY_WEIGHT * quality
    )
    return round(min(1.0, max(0.0, score)), 4)


def neighbours(by_file: Mapping[str, Sequence[CodeChunk]], chunk: CodeChunk, window: int) -> list[CodeChunk]:
    """同文件中按位置最近的 `window` 个 chunk（按行号排序返回）。"""
    if window <= 0:
        return []
    siblings = by_file.get(chunk.filePath, [])
    position = next((i for i, c in enumerate(siblings) if c.id == chunk.id), None)
    if position is None:
        return []
    others = [(abs(i - position), i) for i in range(len(siblings)) if i != position]
    nearest = sorted(i for _, i in sorted(others)[:window])
    return [siblings[i] for i in nearest]


def describe_filters(filters: RetrievalFilters) -> list[str]:
    applied: list[str] = []
    if filters.language is not None:
        applied.append(f"language={filters.language}")
    if filters.fileType is not None:
        applied.append(f"fileType={','.join(filters.fileType)}")
    if filters.complexity is not None:
        applied.append(f"complexity={filters.complexity}")
    if filters.chunkType is not None:
        applied.append(f"chunkType={','.join(filters.chunkType)}")
    if filters.excludeFiles:
        applied.append(f"excludeFiles={','.join(filters.excludeFiles)}")
    return applied


def _unique_tokens(text: str) -> list[str]:
    return list(dict.fromkeys(tokenize(text)))


def _normalize_extension(ext: str) -> str:
    cleaned = ext.strip().lower()
    if cleaned and not cleaned.startswith("."):
        cleaned = f".{cleaned}"
    return cleaned


def _match_reason(matched: Sequence[str], total: int, signals: ChunkSignals | None) -> str:
    parts: list[str] = []
    if matched:
        parts.append(f"matched {len(matched)}/{total} query terms: {', '.join(matched)}")
    if signals is not None:
        shown = [
            f"{name}={value:.2f}"
            for name, value in (("semantic", signals.semantic), ("functional", signals.functional), ("quality", signals.quality))
            if value is not None
        ]
        if shown:
            parts.append(f"external signals {', '.join(shown)}")
    return "; ".join(parts) or "ranked by external signals"


def _chunks_by_file(index: ProjectIndex) -> dict[str, list[CodeChunk]]:
    grouped: dict[str, list[CodeChunk]] = {}
    for chunk in index.chunks:
        grouped.setdefault(chunk.filePath, []).append(chunk)
    return grouped


def _clusters_for(index: ProjectIndex, chunks: Sequence[CodeChunk]) -> list[str]:
    ids = {chunk.id for chunk in chunks}
    return [cluster.clusterId for cluster in index.semanticClusters if ids.intersection(cluster.chunkIds)]


def _suggestions(
    index: ProjectIndex,
    filters: RetrievalFilters,
    candidates: Sequence[CodeChunk],
    results: Sequence[RetrievedChunk],
    query_tokens: Sequence[str],
) -> list[str]:
    if not index.chunks:
        return ["Index the project first"]
    if not candidates:
        applied = describe_filters(filters=filters)
        return [f"Remove or broaden filters: {'; '.join(applied)}"] if applied else ["Index the project first"]
    if not results:
        return ["Try different keywords or a function name"]

    # 命中 chunk 所在 cluster 里、query 中没出现过的关键字
    ids = {r.chunk.id for r in results}
    related: list[str] = []
    for cluster in index.semanticClusters:
        if not ids.intersection(cluster.chunkIds):
            continue
        for keyword in cluster.keywords:
            if keyword not in query_tokens and keyword not in related:
                related.append(keyword)
    return [f"Try also: {keyword}" for keyword in related[:MAX_SUGGESTIONS]]
