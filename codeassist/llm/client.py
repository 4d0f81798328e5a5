"""
生成用的 LLM Client（OpenAI SDK，任意 OpenAI-compatible endpoint）。

只负责一件事：发出一次 JSON mode 的 chat completion，把回复解析成调用方给的输出结构
（chunk 摘要、相关性信号、生成的代码）。超时、取消、错误分类都在 `generation` 那一层。
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TypeVar

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_RAW_PREVIEW_CHARS = 200


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


def parse_generation_output(content: str | None, output_shape: type[M], finish_reason: str | None = None) -> M:
    """
    把模型回复解析成 `output_shape`。

    失败一律抛 `ValueError`（由调用方归类为 schema_violation）：
    - 没有内容 / 因长度被截断
    - 不是 JSON
    - JSON 与输出结构不符
    """
    shape = output_shape.__name__
    if content is None or not content.strip():
        raise ValueError(f"Generation returned no {shape} output")
    if finish_reason == "length":
        raise ValueError(f"Generation output for {shape} was cut off at the token limit")

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Generation output for {shape} is not JSON: {content[:_RAW_PREVIEW_CHARS]}") from exc

    try:
        return output_shape.model_validate(parsed)
    except ValidationError as exc:
        raise ValueError(f"Generation output does not fit {shape}: {exc.error_count()} error(s)") from exc


class OpenAICompatLLMClient:
    def __init__(self, api_key: str, base_url: str, http_client: httpx.AsyncClient, model: str) -> None:
        """
        - base_url: 缺 `/v1` 时自动补上
        - http_client: 与应用共用一个 httpx.AsyncClient（连接池由 lifespan 管理）
        """
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=_normalize_base_url(base_url=base_url), http_client=http_client)

    async def generate_json(self, messages: Sequence[ChatMessage], output_shape: type[M]) -> M:
        """provider/网络错误记录后原样抛出；回复不可用时抛 `ValueError`。"""
        shape = output_shape.__name__
        logger.info(f"Generation request: model={self._model}, output={shape}, messages={len(messages)}")
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error(f"Generation provider error: output={shape}, error={exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"Generation HTTP error: output={shape}, error={exc}")
            raise

        choice = response.choices[0]
        try:
            value = parse_generation_output(
                content=choice.message.content,
                output_shape=output_shape,
                finish_reason=choice.finish_reason,
            )
        except ValueError as exc:
            logger.warning(f"Generation output rejected: {exc}")
            raise
        logger.info(f"Generation output accepted: output={shape}")
        return value
