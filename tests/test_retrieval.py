from __future__ import annotations

from collections.abc import Mapping

import anyio
import pytest

from codeassist.errors import SchemaViolationError
from codeassist.indexing.chunker import extract_chunks
from codeassist.llm.generation import Err
from codeassist.llm.generation import GenerationError
from codeassist.llm.generation import GenerationResult
from codeassist.llm.generation import Ok
from codeassist.retrieval.engine import combine_score
from codeassist.retrieval.engine import retrieve
from codeassist.retrieval.engine import retrieve_for_project
from codeassist.retrieval.models import ChunkSignals
from codeassist.retrieval.signals import retrieve_with_generation
from codeassist.storage.index_store import ProjectIndexStore

AUTH_PY = "\n".join(
    [
        "def authenticate(user):",
        "    return user.password_ok",
        "",
        "def authorize(user, role):",
        "    return role in user.roles",
        "",
        "def logout(session):",
        "    session.clear()",
    ]
)

AUTH_JS = "\n".join(
    [
        "function authLogin() {}",
        "function authLogout() {}",
        "function renderHeader() {}",
        "function renderFooter() {}",
        "function fetchUsers() {}",
        "function authRefresh() {}",
        "function formatDate() {}",
    ]
)


def _store() -> ProjectIndexStore:
    store = ProjectIndexStore()
    chunks = extract_chunks(file_text=AUTH_PY, file_path="server/auth.py") + extract_chunks(
        file_text=AUTH_JS, file_path="web/auth.js"
    )
    store.create("mixed", chunks)
    return store


def test_mixed_index_has_ten_chunks() -> None:
    index = _store().get("mixed")
    assert len(index.chunks) == 10
    assert sum(1 for c in index.chunks if c.language == "python") == 3


def test_language_filter_returns_only_python_subset() -> None:
    store = _store()
    index = store.get("mixed")
    python_ids = {c.id for c in index.chunks if c.language == "python"}

    result = retrieve(index=index, query={"query": "auth", "filters": {"language": "python"}})

    assert 0 < len(result.chunks) <= 3
    assert {r.chunk.id for r in result.chunks} <= python_ids
    assert [r.chunk.functionName for r in result.chunks] == ["authenticate", "authorize"]
    assert result.totalResults == 2
    assert result.searchMetadata is not None
    assert result.searchMetadata.appliedFilters == ["language=python"]
    assert result.searchMetadata.indexVersion == 1


def test_results_are_bounded_and_sorted() -> None:
    index = _store().get("mixed")
    result = retrieve(index=index, query={"query": "auth login", "maxResults": 2, "contextWindow": 0})

    assert len(result.chunks) == 2
    assert result.totalResults > 2
    scores = [r.relevanceScore for r in result.chunks]
    assert scores == sorted(scores, reverse=True)
    assert result.chunks[0].chunk.functionName == "authLogin"
    assert result.chunks[0].relevanceScore == 1.0
    assert all(r.contextChunks is None for r in result.chunks)
    assert all(0 <= r.relevanceScore <= 1 for r in result.chunks)


def test_filters_are_sound() -> None:
    index = _store().get("mixed")
    result = retrieve(
        index=index,
        query={"query": "auth", "filters": {"fileType": ["js"], "excludeFiles": ["server/*"], "chunkType": ["function"]}},
    )
    assert result.chunks
    assert all(r.chunk.filePath == "web/auth.js" for r in result.chunks)

    excluded = retrieve(index=index, query={"query": "auth", "filters": {"excludeFiles": ["web/auth.js", "server/auth.py"]}})
    assert excluded.chunks == []
    assert excluded.suggestions[0].startswith("Remove or broaden filters")


def test_context_window_returns_neighbours_from_same_file() -> None:
    index = _store().get("mixed")
    result = retrieve(index=index, query={"query": "authRefresh", "contextWindow": 2, "maxResults": 1})
    top = result.chunks[0]
    assert top.chunk.functionName == "authRefresh"
    assert [c.functionName for c in top.contextChunks] == ["fetchUsers", "formatDate"]


def test_no_match_suggests_other_keywords() -> None:
    index = _store().get("mixed")
    result = retrieve(index=index, query={"query": "kubernetes", "includeMetadata": False})
    assert result.chunks == []
    assert result.searchMetadata is None
    assert result.suggestions == ["Try different keywords or a function name"]


def test_missing_index_returns_explicit_empty_result() -> None:
    result = retrieve_for_project(store=ProjectIndexStore(), project_id="ghost", query={"query": "auth"})
    assert result.chunks == []
    assert result.totalResults == 0
    assert result.suggestions == ["Index the project first"]
    assert result.searchMetadata is not None
    assert result.searchMetadata.indexVersion == 0


def test_malformed_query_is_rejected() -> None:
    with pytest.raises(SchemaViolationError):
        retrieve_for_project(store=_store(), project_id="mixed", query={"query": "auth", "maxResults": 0})
    with pytest.raises(SchemaViolationError):
        retrieve_for_project(store=_store(), project_id="mixed", query={"query": "auth", "queryType": "fuzzy"})


def test_combine_score() -> None:
    assert combine_score(keyword_overlap=0.5, signals=None) == 0.5
    full = ChunkSignals(semantic=1.0, functional=1.0, quality=1.0)
    assert combine_score(keyword_overlap=1.0, signals=full) == 1.0
    # semantic 与关键字分歧过大时取平均
    assert combine_score(keyword_overlap=0.0, signals=ChunkSignals(semantic=1.0), query_type="hybrid") == 0.2
    assert combine_score(keyword_overlap=0.0, signals=ChunkSignals(semantic=1.0), query_type="semantic") == 0.4


class SignalService:
    async def generate(self, prompt_template: str, context_fields: Mapping[str, str], output_shape) -> GenerationResult:
        if context_fields["file_path"].endswith(".py"):
            return Err(GenerationError(kind="timeout", message="slow"))
        return Ok(output_shape(semantic=0.9, functional=0.9, quality=0.9))


def test_retrieve_with_generation_uses_signals_and_reports_fallbacks() -> None:
    index = _store().get("mixed")

    async def _go():
        return await retrieve_with_generation(
            index=index,
            query={"query": "auth", "queryType": "semantic"},
            generation=SignalService(),
            timeout_seconds=1.0,
        )

    result = anyio.run(_go)
    assert result.searchMetadata is not None
    assert result.searchMetadata.signalSource == "generation"
    names = [r.chunk.functionName for r in result.chunks]
    # 没有关键字命中，但外部信号给了分
    assert "renderHeader" in names
    assert "logout" not in names
    assert any("timeout" in warning for warning in result.warnings)


def test_syntactic_query_ignores_generation() -> None:
    index = _store().get("mixed")

    async def _go():
        return await retrieve_with_generation(
            index=index,
            query={"query": "auth", "queryType": "syntactic"},
            generation=SignalService(),
            timeout_seconds=1.0,
        )

    result = anyio.run(_go)
    expected = retrieve(index=index, query={"query": "auth", "queryType": "syntactic"})
    assert [r.chunk.id for r in result.chunks] == [r.chunk.id for r in expected.chunks]
    assert result.warnings == []
    assert result.searchMetadata.signalSource == "deterministic"
