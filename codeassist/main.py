"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（HTTP Client / LLM Client / Generation Service / Index store）
- 装配路由（health + 核心 API）

注意：
- 业务流程不写在这里（由 `pipeline/orchestrator.py` 负责）
- 没有配置 LLM 时 generation 为 None，核心流程走确定性降级
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

import httpx
from fastapi import FastAPI

from codeassist.api.routes import build_router
from codeassist.config import load_config_from_env
from codeassist.llm.client import OpenAICompatLLMClient
from codeassist.llm.generation import GenerationService
from codeassist.llm.generation import LLMGenerationService
from codeassist.pipeline.orchestrator import build_assist_orchestrator
from codeassist.storage.index_store import ProjectIndexStore

logger = logging.getLogger(__name__)


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：非法/半配置直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    logging.basicConfig(level=config.log_level)

    # 2) 生成服务：可选
    generation: GenerationService | None = None
    if config.llm is not None:
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.index.generation_timeout_seconds))
        llm_client = OpenAICompatLLMClient(
            api_key=config.llm.api_key,
            base_url=str(config.llm.base_url).rstrip("/"),
            http_client=http_client,
            model=config.llm.model,
        )
        generation = LLMGenerationService(client=llm_client)
        logger.info(f"Generation service enabled: model={config.llm.model}")
    else:
        logger.info("Generation service not configured; using deterministic fallbacks")

    # 3) 索引 store + orchestrator
    orchestrator = build_assist_orchestrator(
        store=ProjectIndexStore(),
        generation=generation,
        settings=config.index,
    )

    app = FastAPI(title="Code Assist", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_router(orchestrator=orchestrator))
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
