"""
应用配置加载。

设计目标：
- **严格**：LLM 配置要么全给，要么全不给（半配置直接报错）
- **可降级**：不配置 LLM 时核心流程照样可用（只是没有生成增强）
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

LLM_KEYS: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")


class LLMConfig(BaseModel):
    """生成服务（OpenAI-compatible）连接配置。"""

    base_url: HttpUrl
    api_key: str
    model: str


class IndexConfig(BaseModel):
    """索引与生成调用的资源限制。"""

    max_file_bytes: int = Field(default=1_000_000, gt=0)
    generation_timeout_seconds: float = Field(default=30.0, gt=0)
    generation_max_concurrency: int = Field(default=4, gt=0)


class AppConfig(BaseModel):
    llm: LLMConfig | None = None
    index: IndexConfig = Field(default_factory=IndexConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：LLM 变量只给了一部分则抛 `ValueError`；数值非法时 pydantic 抛错
    """
    present = [key for key in LLM_KEYS if environ.get(key)]
    llm: LLMConfig | None = None
    if present:
        missing = [key for key in LLM_KEYS if key not in present]
        if missing:
            raise ValueError(f"Missing required env vars: {', '.join(missing)}")
        llm = LLMConfig(
            base_url=environ["LLM_BASE_URL"],
            api_key=environ["LLM_API_KEY"],
            model=environ["LLM_MODEL"],
        )

    # 可选项：只覆盖显式给出的值，其余走默认
    index_fields: dict[str, str] = {}
    if environ.get("INDEX_MAX_FILE_BYTES"):
        index_fields["max_file_bytes"] = environ["INDEX_MAX_FILE_BYTES"]
    if environ.get("GENERATION_TIMEOUT_SECONDS"):
        index_fields["generation_timeout_seconds"] = environ["GENERATION_TIMEOUT_SECONDS"]
    if environ.get("GENERATION_MAX_CONCURRENCY"):
        index_fields["generation_max_concurrency"] = environ["GENERATION_MAX_CONCURRENCY"]

    return AppConfig(
        llm=llm,
        index=IndexConfig.model_validate(index_fields),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )
