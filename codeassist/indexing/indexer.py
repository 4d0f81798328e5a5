"""
Corpus indexer：把一批文件变成一个提交后的 Project Index 版本。

流程：
1) 校验 `IndexRequest`（不合法直接 `SchemaViolationError`，不做任何处理）
2) 逐文件抽取 chunk；单文件失败只记 `IndexDiagnostic`，其余文件继续
3) （可选）通过 Generation Service 并发补充更好的 summary，失败保留确定性 summary
4) 按 mode 提交到 store（create/update/refresh）
"""

from __future__ import annotations

import functools
import logging
from collections import Counter
from collections.abc import Mapping, Sequence

import anyio
from pydantic import BaseModel, Field

from codeassist.config import IndexConfig
from codeassist.errors import parse_input
from codeassist.indexing.chunker import extract_chunks
from codeassist.indexing.file_scanner import FileSystemProvider
from codeassist.indexing.file_scanner import parse_project_tree
from codeassist.llm.generation import GenerationResult
from codeassist.llm.generation import GenerationService
from codeassist.llm.generation import Ok
from codeassist.llm.generation import run_generation
from codeassist.storage.index_store import ProjectIndexStore
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import CorpusFile
from codeassist.storage.models import IndexBuildReport
from codeassist.storage.models import IndexDiagnostic
from codeassist.storage.models import IndexMode
from codeassist.storage.models import IndexRequest

logger = logging.getLogger(__name__)

PROMPT_CONTENT_CHARS = 4000

SUMMARY_PROMPT = """Summarize what the following {language} {chunk_type} from `{file_path}` does.
Answer in one sentence of at most 30 words.

```{language}
{content}
```"""


class ChunkSummary(BaseModel):
    summary: str = Field(min_length=1, max_length=300)


async def index_corpus(
    store: ProjectIndexStore,
    project_id: str,
    request: IndexRequest | Mapping[str, object],
    generation: GenerationService | None = None,
    config: IndexConfig | None = None,
    cancel_event: anyio.Event | None = None,
) -> IndexBuildReport:
    parsed = parse_input(IndexRequest, request)
    settings = config or IndexConfig()
    logger.info(f"Indexing corpus: project={project_id}, mode={parsed.mode}, files={len(parsed.files)}")

    # 1) 逐文件抽取（单文件隔离）
    file_chunks, diagnostics = extract_corpus(files=parsed.files, max_file_bytes=settings.max_file_bytes)

    # 2) summary enrichment（可选）
    warnings: list[str] = []
    if generation is not None:
        flat = [chunk for chunks in file_chunks.values() for chunk in chunks]
        enriched, warnings = await enrich_summaries(
            chunks=flat,
            generation=generation,
            timeout_seconds=settings.generation_timeout_seconds,
            max_concurrency=settings.generation_max_concurrency,
            cancel_event=cancel_event,
        )
        by_id = {chunk.id: chunk for chunk in enriched}
        file_chunks = {path: [by_id[c.id] for c in chunks] for path, chunks in file_chunks.items()}

    # 3) 提交（store 的写锁是线程锁，放到 worker thread 上等）
    tree_paths = parse_project_tree(parsed.projectTree) if parsed.projectTree else []
    commit = _commit_call(
        store=store,
        project_id=project_id,
        mode=parsed.mode,
        file_chunks=file_chunks,
        deleted_paths=parsed.deletedPaths,
        tree_paths=tree_paths,
    )
    index = await anyio.to_thread.run_sync(commit)

    if diagnostics:
        logger.warning(f"Indexing finished with {len(diagnostics)} failed file(s): project={project_id}")
    return IndexBuildReport(
        index=index,
        indexedFiles=len(file_chunks),
        diagnostics=diagnostics,
        warnings=warnings,
    )


async def index_from_provider(
    store: ProjectIndexStore,
    project_id: str,
    provider: FileSystemProvider,
    mode: IndexMode = "refresh",
    generation: GenerationService | None = None,
    config: IndexConfig | None = None,
    cancel_event: anyio.Event | None = None,
) -> IndexBuildReport:
    """从 File System Provider 读出整个语料再走 `index_corpus`；读失败的文件记为诊断。"""
    files, read_failures = await anyio.to_thread.run_sync(_read_corpus, provider)
    report = await index_corpus(
        store=store,
        project_id=project_id,
        request=IndexRequest(mode=mode, files=files),
        generation=generation,
        config=config,
        cancel_event=cancel_event,
    )
    if not read_failures:
        return report
    return report.model_copy(update={"diagnostics": read_failures + report.diagnostics})


def extract_corpus(
    files: Sequence[CorpusFile],
    max_file_bytes: int,
) -> tuple[dict[str, list[CodeChunk]], list[IndexDiagnostic]]:
    file_chunks: dict[str, list[CodeChunk]] = {}
    diagnostics: list[IndexDiagnostic] = []
    for file in files:
        size = len(file.content.encode("utf-8"))
        if size > max_file_bytes:
            diagnostics.append(
                IndexDiagnostic(path=file.path, message=f"File exceeds {max_file_bytes} bytes ({size})")
            )
            continue
        try:
            file_chunks[file.path] = extract_chunks(
                file_text=file.content,
                file_path=file.path,
                last_modified=file.lastModified,
            )
        except Exception as exc:
            logger.warning(f"Chunk extraction failed: path={file.path}, error={exc}")
            diagnostics.append(IndexDiagnostic(path=file.path, message=f"{type(exc).__name__}: {exc}"))
    return file_chunks, diagnostics


async def enrich_summaries(
    chunks: Sequence[CodeChunk],
    generation: GenerationService | None,
    timeout_seconds: float,
    max_concurrency: int = 4,
    cancel_event: anyio.Event | None = None,
) -> tuple[list[CodeChunk], list[str]]:
    """
    并发为每个 chunk 请求更好的 `semanticSummary`。

    - 并发度由 `CapacityLimiter` 限制；全部完成后再按原顺序合并
    - 任意 `Err`（超时/取消/provider/schema）都保留确定性 summary，并汇总成 warnings
    """
    if generation is None or not chunks:
        return list(chunks), []

    limiter = anyio.CapacityLimiter(max_concurrency)
    results: list[GenerationResult | None] = [None] * len(chunks)

    async def _summarize(idx: int, chunk: CodeChunk) -> None:
        async with limiter:
            results[idx] = await run_generation(
                service=generation,
                prompt_template=SUMMARY_PROMPT,
                context_fields={
                    "language": chunk.language,
                    "chunk_type": chunk.chunkType,
                    "file_path": chunk.filePath,
                    "content": chunk.content[:PROMPT_CONTENT_CHARS],
                },
                output_shape=ChunkSummary,
                timeout_seconds=timeout_seconds,
                cancel_event=cancel_event,
            )

    async with anyio.create_task_group() as tg:
        for idx, chunk in enumerate(chunks):
            tg.start_soon(_summarize, idx, chunk)

    enriched: list[CodeChunk] = []
    failures: Counter[str] = Counter()
    for chunk, result in zip(chunks, results):
        if isinstance(result, Ok):
            enriched.append(chunk.model_copy(update={"semanticSummary": result.value.summary.strip()}))
            continue
        enriched.append(chunk)
        failures[result.error.kind if result is not None else "cancelled"] += 1

    warnings = [f"Summary enrichment fell back for {count} chunk(s): {kind}" for kind, count in sorted(failures.items())]
    return enriched, warnings


def _commit_call(
    store: ProjectIndexStore,
    project_id: str,
    mode: IndexMode,
    file_chunks: dict[str, list[CodeChunk]],
    deleted_paths: Sequence[str],
    tree_paths: Sequence[str],
):
    if mode == "update":
        return functools.partial(
            store.update,
            project_id,
            file_chunks,
            deleted_paths=deleted_paths,
            tree_paths=tree_paths,
        )
    all_chunks = [chunk for chunks in file_chunks.values() for chunk in chunks]
    if mode == "refresh":
        return functools.partial(store.refresh, project_id, all_chunks, tree_paths=tree_paths)
    return functools.partial(store.create, project_id, all_chunks, tree_paths=tree_paths)


def _read_corpus(provider: FileSystemProvider) -> tuple[list[CorpusFile], list[IndexDiagnostic]]:
    files: list[CorpusFile] = []
    failures: list[IndexDiagnostic] = []
    for path in provider.list_files():
        try:
            content = provider.read_file(path)
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to read file: path={path}, error={exc}")
            failures.append(IndexDiagnostic(path=path, message=f"{type(exc).__name__}: {exc}"))
            continue
        files.append(CorpusFile(path=path, content=content))
    return files, failures
