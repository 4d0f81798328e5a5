"""
HTTP 接入层。

职责：
- 读取 JSON body -> 在边界上做 schema 校验（不合法返回 422，不做任何处理）
- 调用核心组件（索引 / 检索 / 分类 / 合并 / assist 编排）
- 输出统一用 camelCase 字段名（`model_dump(mode="json", exclude_none=True)`）
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter
from fastapi import HTTPException
from fastapi import Request
from pydantic import BaseModel

from codeassist.errors import IndexNotFoundError
from codeassist.errors import SchemaViolationError
from codeassist.errors import parse_input
from codeassist.indexing.indexer import index_corpus
from codeassist.merge.planner import plan_merge_request
from codeassist.pipeline.orchestrator import AssistOrchestrator
from codeassist.pipeline.orchestrator import run_assist
from codeassist.retrieval.engine import retrieve_for_project
from codeassist.retrieval.models import RetrievalQuery
from codeassist.retrieval.signals import retrieve_with_generation
from codeassist.routing.intent import classify_request
from codeassist.storage.models import summarize_index


async def _read_json(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body.decode("utf-8") or "null")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


def build_router(orchestrator: AssistOrchestrator) -> APIRouter:
    """创建 API 路由；store / generation / 限额都来自 orchestrator。"""
    router = APIRouter()
    store = orchestrator.store
    settings = orchestrator.settings

    @router.post("/projects/{project_id}/index")
    async def build_index(project_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            report = await index_corpus(
                store=store,
                project_id=project_id,
                request=payload,
                generation=orchestrator.generation,
                config=settings,
            )
        except SchemaViolationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        summary = summarize_index(index=report.index, diagnostics=report.diagnostics, warnings=report.warnings)
        return _dump(summary)

    @router.get("/projects/{project_id}/index")
    async def get_index(project_id: str) -> dict[str, Any]:
        try:
            index = store.get(project_id)
        except IndexNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _dump(summarize_index(index=index))

    @router.post("/projects/{project_id}/retrieve")
    async def retrieve_chunks(project_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            query = parse_input(RetrievalQuery, payload)
        except SchemaViolationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        index = store.query(project_id)
        if index is None or not orchestrator.use_relevance_signals:
            return _dump(retrieve_for_project(store=store, project_id=project_id, query=query))
        result = await retrieve_with_generation(
            index=index,
            query=query,
            generation=orchestrator.generation,
            timeout_seconds=settings.generation_timeout_seconds,
            max_concurrency=settings.generation_max_concurrency,
        )
        return _dump(result)

    @router.post("/classify")
    async def classify_instruction(request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            return _dump(classify_request(payload))
        except SchemaViolationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @router.post("/merge")
    async def merge_content(request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            return _dump(plan_merge_request(payload))
        except SchemaViolationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @router.post("/projects/{project_id}/assist")
    async def assist(project_id: str, request: Request) -> dict[str, Any]:
        payload = await _read_json(request)
        try:
            response = await run_assist(orchestrator=orchestrator, project_id=project_id, request=payload)
        except SchemaViolationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return _dump(response)

    return router
