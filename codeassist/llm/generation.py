"""
Generation Service：对生成能力的唯一出口。

约定：
- `generate(prompt_template, context_fields, output_shape)` 返回 `Ok(value)` 或 `Err(GenerationError)`
- provider 错误/超时/输出不合 schema/取消 **全部** 表示为 `Err`，不向上抛
- 核心流程在没有 service 时也能跑：`run_generation(None, ...)` 返回 `Err(kind="skipped")`
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, Literal, Protocol, TypeVar, Union

import anyio
import httpx
from openai import OpenAIError
from pydantic import BaseModel

from codeassist.llm.client import ChatMessage
from codeassist.llm.client import OpenAICompatLLMClient

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

GenerationErrorKind = Literal["provider_unavailable", "timeout", "schema_violation", "cancelled", "skipped"]

SYSTEM_PROMPT = (
    "You are a code assistant embedded in an editor. "
    "Respond with a single JSON object and nothing else. "
    "The object must match this JSON schema:\n{schema}"
)


@dataclass(frozen=True)
class GenerationError:
    kind: GenerationErrorKind
    message: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: GenerationError


GenerationResult = Union[Ok[Any], Err]


class GenerationService(Protocol):
    async def generate(
        self,
        prompt_template: str,
        context_fields: Mapping[str, str],
        output_shape: type[M],
    ) -> GenerationResult:
        ...


class LLMGenerationService:
    """基于 `OpenAICompatLLMClient.generate_json` 的实现：异常在这一层转换成 `Err`。"""

    def __init__(self, client: OpenAICompatLLMClient) -> None:
        self._client = client

    async def generate(
        self,
        prompt_template: str,
        context_fields: Mapping[str, str],
        output_shape: type[M],
    ) -> GenerationResult:
        try:
            prompt = render_prompt(prompt_template=prompt_template, context_fields=context_fields)
        except KeyError as exc:
            return Err(GenerationError(kind="schema_violation", message=f"Missing prompt field: {exc}"))

        schema = json.dumps(output_shape.model_json_schema(), ensure_ascii=False)
        messages = [
            ChatMessage(role="system", content=SYSTEM_PROMPT.format(schema=schema)),
            ChatMessage(role="user", content=prompt),
        ]
        try:
            value = await self._client.generate_json(messages=messages, output_shape=output_shape)
        except (OpenAIError, httpx.HTTPError) as exc:
            return Err(GenerationError(kind="provider_unavailable", message=str(exc)))
        except ValueError as exc:
            return Err(GenerationError(kind="schema_violation", message=str(exc)))
        return Ok(value)


def render_prompt(prompt_template: str, context_fields: Mapping[str, str]) -> str:
    return prompt_template.format_map(dict(context_fields))


async def run_generation(
    service: GenerationService | None,
    prompt_template: str,
    context_fields: Mapping[str, str],
    output_shape: type[M],
    timeout_seconds: float,
    cancel_event: anyio.Event | None = None,
) -> GenerationResult:
    """
    在超时与取消约束下调用 service。

    - service 为 None：`Err(skipped)`
    - 超过 `timeout_seconds`：`Err(timeout)`
    - `cancel_event` 被 set：`Err(cancelled)`，调用方改用确定性结果
    """
    if service is None:
        return Err(GenerationError(kind="skipped", message="No generation service configured"))
    if cancel_event is not None and cancel_event.is_set():
        return Err(GenerationError(kind="cancelled", message="Generation cancelled before start"))

    result: GenerationResult = Err(GenerationError(kind="cancelled", message="Generation cancelled"))

    async with anyio.create_task_group() as tg:

        async def _call() -> None:
            nonlocal result
            try:
                with anyio.fail_after(timeout_seconds):
                    result = await service.generate(prompt_template, context_fields, output_shape)
            except TimeoutError:
                result = Err(GenerationError(kind="timeout", message=f"Generation exceeded {timeout_seconds}s"))
            tg.cancel_scope.cancel()

        async def _watch_cancel(event: anyio.Event) -> None:
            await event.wait()
            tg.cancel_scope.cancel()

        tg.start_soon(_call)
        if cancel_event is not None:
            tg.start_soon(_watch_cancel, cancel_event)

    if isinstance(result, Err):
        logger.warning(f"Generation fell back: kind={result.error.kind}, message={result.error.message}")
    return result
