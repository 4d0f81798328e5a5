from __future__ import annotations

"""
错误分类（taxonomy）。

原则：
- 只有**顶层输入格式错误**是硬失败（`SchemaViolationError`）
- 索引/检索的单项失败只降级 + 记录诊断，不抛出
- 生成服务失败走 `llm/generation.py` 的 `Err` 结果，不用异常传播
"""

from collections.abc import Mapping
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class SchemaViolationError(ValueError):
    """输入不符合声明的 shape（在任何处理之前拒绝）。"""

    pass


class IndexNotFoundError(LookupError):
    """查询了一个还没有索引的 project。"""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"No index for project: {project_id}")
        self.project_id = project_id


def parse_input(schema: type[ModelT], payload: ModelT | Mapping[str, object]) -> ModelT:
    """
    在边界处做 schema 校验。

    - 输入：已构造的 model，或原始 dict
    - 输出：校验后的 model
    - 失败：抛 `SchemaViolationError`（保留 pydantic 的错误链）
    """
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise SchemaViolationError(f"Input does not match {schema.__name__}: {exc}") from exc
