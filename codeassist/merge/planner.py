"""
Merge Planner：决定**怎么**把新内容合进已有文件（不判断新内容写得对不对）。

决策顺序（第一个适用的生效）：
1) 已有文件为空 -> `insert` 整个新内容
2) 指令点名了已有 chunk -> `update_section` 替换该 chunk 的行范围
3) 新内容重新声明了已有名字 -> 每个重名 chunk 一个 `replace`（带 warning），
   其余新定义追加到末尾，新 import 放到已有 import 之后
4) 新内容只有 import -> `insert` 到最后一个 import chunk 之后（没有则 `prepend`）
5) 其它 -> `append`

置信度：从 0.9 开始，每个歧义（同名 chunk、多个点名目标、找不到锚点）扣 0.2；
低于 0.5 仍返回 best-effort 结果，但附带 warning 让调用方决定是否应用。

幂等：目标位置的内容与新内容一致时，不产生任何操作，`mergedContent == existingContent`。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from codeassist.errors import parse_input
from codeassist.indexing.chunker import extract_chunks
from codeassist.indexing.chunker import split_line_endings
from codeassist.indexing.chunker import split_lines
from codeassist.indexing.languages import get_profile
from codeassist.indexing.languages import infer_language_from_path
from codeassist.merge.models import MergeOperation
from codeassist.merge.models import MergeRequest
from codeassist.merge.models import MergeResult
from codeassist.storage.models import CodeChunk

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.9
AMBIGUITY_PENALTY = 0.2
LOW_CONFIDENCE_THRESHOLD = 0.5
_CLOSING_BRACKETS = (")", "]", "}")


@dataclass
class _Plan:
    # 原文件上的编辑：0-based 半开区间 [start, end) 替换为 new_lines
    edits: list[tuple[int, int, list[str]]] = field(default_factory=list)
    operations: list[MergeOperation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    ambiguities: list[str] = field(default_factory=list)
    touched: set[str] = field(default_factory=set)
    notes: list[str] = field(default_factory=list)


def plan_merge(
    existing_content: str,
    generated_content: str,
    instruction_context: str = "",
    existing_chunks: Sequence[CodeChunk] | None = None,
    language: str | None = None,
    file_path: str = "untitled",
) -> MergeResult:
    """
    生成一个合并计划并给出合并后的文本。

    - 输入：已有内容、新内容、指令文本、已有内容的 chunk（缺省时现场抽取）
    - 输出：`MergeResult`（operations 有序；confidence 与 warnings 总是给出）
    """
    resolved_language = language or infer_language_from_path(path=file_path)

    # 1) 空文件：新内容就是整个文件
    if not existing_content.strip():
        if not generated_content.strip():
            return _finish(existing_content=existing_content, lines=[], endings=[], chunks=[], plan=_Plan())
        operation = MergeOperation(
            type="insert",
            targetLineNumber=1,
            content=generated_content,
            reasoning="Existing file is empty; the generated content becomes the whole file",
        )
        logger.info(f"Merge plan: file={file_path}, operations=insert(whole file)")
        return MergeResult(
            mergedContent=generated_content,
            operations=[operation],
            summary=f"Inserted {len(split_lines(generated_content))} line(s) into an empty file",
            confidence=BASE_CONFIDENCE,
        )

    chunks = list(existing_chunks) if existing_chunks is not None else extract_chunks(
        file_text=existing_content,
        file_path=file_path,
        language=resolved_language,
    )
    generated_chunks = extract_chunks(file_text=generated_content, file_path=file_path, language=resolved_language)
    lines, endings = split_line_endings(existing_content)
    plan = _Plan()

    if _same_text(existing_content, generated_content):
        plan.notes.append("generated content is identical to the existing file")
        return _finish(existing_content=existing_content, lines=lines, endings=endings, chunks=chunks, plan=plan)

    targets = named_targets(instruction=instruction_context, chunks=chunks)
    if targets:
        # 2) 指令点名
        _plan_update_section(
            plan=plan,
            lines=lines,
            chunks=chunks,
            generated_chunks=generated_chunks,
            generated_content=generated_content,
            targets=targets,
        )
    else:
        # 3) / 4) / 5)
        profile = get_profile(resolved_language)
        has_boundary = any(profile.is_chunk_boundary(line) for line in split_lines(generated_content))
        _plan_structural(
            plan=plan,
            lines=lines,
            chunks=chunks,
            generated_chunks=generated_chunks,
            generated_content=generated_content,
            has_boundary=has_boundary,
        )

    result = _finish(existing_content=existing_content, lines=lines, endings=endings, chunks=chunks, plan=plan)
    logger.info(
        f"Merge plan: file={file_path}, operations={[op.type for op in result.operations]}, "
        f"confidence={result.confidence}"
    )
    return result


def plan_merge_request(request: MergeRequest | Mapping[str, object]) -> MergeResult:
    parsed = parse_input(MergeRequest, request)
    extension = parsed.fileExtension.strip()
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return plan_merge(
        existing_content=parsed.existingContent,
        generated_content=parsed.generatedContent,
        instruction_context=parsed.instructionText or "",
        language=infer_language_from_path(path=f"file{extension}"),
        file_path=parsed.fileName,
    )


def named_targets(instruction: str, chunks: Sequence[CodeChunk]) -> list[str]:
    """指令里出现的已有 chunk 名（整词匹配），按在指令中出现的位置排序。"""
    if not instruction.strip():
        return []
    positions: dict[str, int] = {}
    for chunk in chunks:
        name = chunk.functionName
        if not name or chunk.chunkType == "import" or name in positions:
            continue
        match = re.search(rf"(?<![\w$]){re.escape(name)}(?![\w$])", instruction)
        if match is not None:
            positions[name] = match.start()
    return sorted(positions, key=lambda name: positions[name])


def _plan_update_section(
    plan: _Plan,
    lines: list[str],
    chunks: Sequence[CodeChunk],
    generated_chunks: Sequence[CodeChunk],
    generated_content: str,
    targets: list[str],
) -> None:
    name = targets[0]
    if len(targets) > 1:
        plan.ambiguities.append(f"instruction names multiple existing chunks ({', '.join(targets)}); updating {name}")
    candidates = [chunk for chunk in chunks if chunk.functionName == name]
    if len(candidates) > 1:
        plan.ambiguities.append(f"multiple existing chunks are named {name}; updating the first one")
    target = candidates[0]

    replacement_chunk = next((g for g in generated_chunks if g.functionName == name), None)
    if replacement_chunk is None:
        plan.ambiguities.append(f"no clear anchor: generated content has no definition named {name}; using it whole")
        replacement = generated_content
    else:
        replacement = replacement_chunk.content

    if _same_text(target.content, replacement):
        plan.notes.append(f"{name} is already up to date")
        return

    plan.edits.append(_replace_edit(lines=lines, chunk=target, replacement=replacement))
    plan.operations.append(
        MergeOperation(
            type="update_section",
            startLineNumber=target.lineRange.start,
            endLineNumber=target.lineRange.end,
            content=replacement,
            reasoning=f"Instruction names {name}; updating its section in place",
        )
    )
    plan.touched.add(target.id)


def _plan_structural(
    plan: _Plan,
    lines: list[str],
    chunks: Sequence[CodeChunk],
    generated_chunks: Sequence[CodeChunk],
    generated_content: str,
    has_boundary: bool,
) -> None:
    by_name: dict[str, list[CodeChunk]] = {}
    for chunk in chunks:
        if chunk.functionName and chunk.chunkType != "import":
            by_name.setdefault(chunk.functionName, []).append(chunk)

    import_statements: list[str] = []
    remaining: list[CodeChunk] = []
    redeclared = 0
    for generated in generated_chunks:
        if not generated.content.strip():
            continue
        if generated.chunkType == "import":
            import_statements.extend(_import_statements(generated.content))
            continue
        name = generated.functionName
        if name is None or name not in by_name:
            remaining.append(generated)
            continue

        # 3) 重名定义：替换原定义
        redeclared += 1
        existing = by_name[name]
        if len(existing) > 1:
            plan.ambiguities.append(f"multiple existing chunks are named {name}; replacing the first one")
        target = existing[0]
        if _same_text(target.content, generated.content):
            plan.notes.append(f"{name} is already up to date")
            continue
        plan.edits.append(_replace_edit(lines=lines, chunk=target, replacement=generated.content))
        plan.operations.append(
            MergeOperation(
                type="replace",
                startLineNumber=target.lineRange.start,
                endLineNumber=target.lineRange.end,
                content=generated.content,
                reasoning=f"Generated content redeclares {name}; replacing the existing definition",
            )
        )
        plan.warnings.append(f"overwriting existing definition of {name}")
        plan.touched.add(target.id)

    # 4) 新 import 放到 import 块之后
    _plan_imports(plan=plan, lines=lines, chunks=chunks, statements=import_statements)

    # 5) 其余内容追加到末尾
    if not remaining:
        return
    if not redeclared and not has_boundary:
        plan.ambiguities.append("no clear anchor: generated content has no recognizable definition; appending at end")
    new_lines = _trim_blank_edges(split_lines("\n".join(chunk.content for chunk in remaining)))
    if _tail_matches(lines=lines, new_lines=new_lines):
        plan.notes.append("generated content is already at the end of the file")
        return
    separator = [""] if lines and lines[-1].strip() else []
    plan.edits.append((len(lines), len(lines), separator + new_lines))
    plan.operations.append(
        MergeOperation(
            type="append",
            targetLineNumber=len(lines) + len(separator) + 1,
            content="\n".join(new_lines),
            reasoning="New definitions have no counterpart in the existing file; appending at the end",
        )
    )


def _plan_imports(plan: _Plan, lines: list[str], chunks: Sequence[CodeChunk], statements: list[str]) -> None:
    if not statements:
        return
    existing = {_normalize(statement) for statement in _import_statements("\n".join(lines))}
    missing: list[str] = []
    for statement in statements:
        key = _normalize(statement)
        if key in existing:
            continue
        existing.add(key)
        missing.append(statement)
    if not missing:
        plan.notes.append("all generated imports are already present")
        return

    new_lines = split_lines("\n".join(missing))
    import_chunks = [chunk for chunk in chunks if chunk.chunkType == "import"]
    if not import_chunks:
        plan.edits.append((0, 0, new_lines + [""]))
        plan.operations.append(
            MergeOperation(
                type="prepend",
                targetLineNumber=1,
                content="\n".join(new_lines),
                reasoning="No existing import block; placing new imports at the top of the file",
            )
        )
        return

    last = import_chunks[-1]
    anchor = _last_content_line(lines=lines, chunk=last)
    plan.edits.append((anchor + 1, anchor + 1, new_lines))
    plan.operations.append(
        MergeOperation(
            type="insert",
            targetLineNumber=anchor + 2,
            insertionPoint=lines[anchor].strip() if anchor < len(lines) else None,
            content="\n".join(new_lines),
            reasoning="New imports go right after the last existing import",
        )
    )


def _finish(
    existing_content: str,
    lines: list[str],
    endings: list[str],
    chunks: Sequence[CodeChunk],
    plan: _Plan,
) -> MergeResult:
    confidence = round(max(0.0, BASE_CONFIDENCE - AMBIGUITY_PENALTY * len(plan.ambiguities)), 2)
    warnings = plan.warnings + plan.ambiguities
    if confidence < LOW_CONFIDENCE_THRESHOLD:
        warnings.append(f"Low confidence merge ({confidence}); review before applying or keep the original file")

    if plan.operations:
        newline = _dominant_newline(endings)
        rows = list(zip(lines, endings))
        # 从后往前应用，前面的坐标不受影响；新行使用文件自己的换行符
        for start, end, new_lines in sorted(plan.edits, key=lambda edit: (edit[0], edit[1]), reverse=True):
            rows[start:end] = [(line, newline) for line in new_lines]
        merged = _join_rows(rows=rows, newline=newline, final_newline=existing_content.endswith("\n"))
        summary = "; ".join(_describe(operation) for operation in plan.operations)
    else:
        merged = existing_content
        summary = f"No changes needed: {', '.join(plan.notes) or 'nothing to merge'}"

    return MergeResult(
        mergedContent=merged,
        operations=plan.operations,
        summary=summary,
        confidence=confidence,
        warnings=warnings,
        preservedSections=[_label(chunk) for chunk in chunks if chunk.id not in plan.touched],
    )


def _dominant_newline(endings: Sequence[str]) -> str:
    return "\r\n" if endings.count("\r\n") > endings.count("\n") else "\n"


def _join_rows(rows: list[tuple[str, str]], newline: str, final_newline: bool) -> str:
    """未改动的行保留原行尾；原来的最后一行如果后面接了新行，补上换行。"""
    if not rows:
        return ""
    body = "".join(line + (ending or newline) for line, ending in rows[:-1])
    last, ending = rows[-1]
    if final_newline:
        return body + last + (ending or newline)
    return body + last


def _replace_edit(lines: list[str], chunk: CodeChunk, replacement: str) -> tuple[int, int, list[str]]:
    """替换 chunk 的正文部分；chunk 末尾的空行保留，维持与下一个定义的间隔。"""
    start = chunk.lineRange.start - 1
    end = _last_content_line(lines=lines, chunk=chunk) + 1
    return start, end, _trim_blank_edges(split_lines(replacement))


def _last_content_line(lines: list[str], chunk: CodeChunk) -> int:
    start = chunk.lineRange.start - 1
    end = min(chunk.lineRange.end, len(lines)) - 1
    while end > start and not lines[end].strip():
        end -= 1
    return max(end, start)


def _import_statements(text: str) -> list[str]:
    """按语句切分 import（多行 `from x import (...)` 算一条）。"""
    statements: list[str] = []
    for line in split_lines(text):
        if not line.strip():
            continue
        continuation = line[0].isspace() or line.lstrip().startswith(_CLOSING_BRACKETS)
        if continuation and statements:
            statements[-1] = f"{statements[-1]}\n{line}"
        else:
            statements.append(line)
    return statements


def _trim_blank_edges(lines: list[str]) -> list[str]:
    start = 0
    end = len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _tail_matches(lines: list[str], new_lines: list[str]) -> bool:
    existing = _trim_blank_edges(lines)
    if not new_lines or len(new_lines) > len(existing):
        return False
    tail = existing[len(existing) - len(new_lines) :]
    return [line.rstrip() for line in tail] == [line.rstrip() for line in new_lines]


def _same_text(left: str, right: str) -> bool:
    return [line.rstrip() for line in _trim_blank_edges(split_lines(left))] == [
        line.rstrip() for line in _trim_blank_edges(split_lines(right))
    ]


def _normalize(statement: str) -> str:
    return " ".join(statement.split())


def _label(chunk: CodeChunk) -> str:
    if chunk.functionName:
        return chunk.functionName
    return f"{chunk.chunkType} (lines {chunk.lineRange.start}-{chunk.lineRange.end})"


def _describe(operation: MergeOperation) -> str:
    if operation.type in ("replace", "update_section"):
        return f"{operation.type} lines {operation.startLineNumber}-{operation.endLineNumber}"
    return f"{operation.type} at line {operation.targetLineNumber}"
