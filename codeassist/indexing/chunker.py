from __future__ import annotations

"""
Chunk Extractor（非 AI）。

算法（逐行扫描）：
- profile 的 `is_chunk_boundary` 命中时开启新 chunk，后续行累积到下一个边界或 EOF
- decorator/annotation 这类 header 行依附到下一个定义上；连续的 import 合并为一个 chunk
- 文件开头、第一个边界之前的行构成一个 residual chunk；最后一个 chunk 总会被关闭输出

保证：
- 同一输入（文本 + 路径 + 语言）永远得到完全相同的输出
- chunk 按 `lineRange.start` 排序、互不重叠、合起来覆盖整个文件
"""

import hashlib
import os
import re
from datetime import datetime

from codeassist.indexing.languages import LanguageProfile
from codeassist.indexing.languages import get_profile
from codeassist.indexing.languages import infer_language_from_path
from codeassist.storage.models import EPOCH
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import Complexity
from codeassist.storage.models import LineRange

MAX_KEYWORDS = 10
SUMMARY_PREFIX_CHARS = 100
LOW_COMPLEXITY_MAX = 20
MEDIUM_COMPLEXITY_MAX = 50

_BRANCH_KEYWORDS = re.compile(r"\b(?:if|elif|else|for|while|switch|case|catch|except)\b")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_TOKEN = re.compile(r"[a-z0-9]+")
_CLOSING_BRACKETS = (")", "]", "}")


def extract_chunks(
    file_text: str,
    file_path: str,
    language: str | None = None,
    last_modified: datetime | None = None,
) -> list[CodeChunk]:
    """
    把一个文件切成有序的 chunk 列表。

    - 输入：文件文本、路径、语言（缺省按扩展名推断）、修改时间（缺省为 epoch）
    - 输出：`CodeChunk` 列表；空文件返回 []
    """
    resolved_language = language or infer_language_from_path(path=file_path)
    profile = get_profile(resolved_language)
    lines = split_lines(file_text)
    spans = _split_spans(profile=profile, lines=lines)
    timestamp = last_modified or EPOCH
    return [
        _span_to_chunk(
            profile=profile,
            language=resolved_language,
            path=file_path,
            lines=lines,
            start=start,
            end=end,
            last_modified=timestamp,
        )
        for start, end in spans
    ]


def split_line_endings(text: str) -> tuple[list[str], list[str]]:
    """
    按编辑器的行号规则切行：只认 `\\n`（`\\r\\n` 算一个换行），其它 Unicode 换行符留在行内。

    返回 `(lines, endings)`：lines 不含行尾符；endings[i] 是第 i 行后面原本的行尾
    （`"\\r\\n"` / `"\\n"`，没有换行结尾的最后一行为 `""`）。末尾换行不产生空行。
    """
    lines: list[str] = []
    endings: list[str] = []
    parts = text.split("\n")
    for idx, part in enumerate(parts):
        if idx == len(parts) - 1:
            if part:
                lines.append(part)
                endings.append("")
            break
        if part.endswith("\r"):
            lines.append(part[:-1])
            endings.append("\r\n")
        else:
            lines.append(part)
            endings.append("\n")
    return lines, endings


def split_lines(text: str) -> list[str]:
    return split_line_endings(text)[0]


def _split_spans(profile: LanguageProfile, lines: list[str]) -> list[tuple[int, int]]:
    """返回 0-based 闭区间 `(start, end)` 列表。"""
    if not lines:
        return []

    spans: list[tuple[int, int]] = []
    start = 0
    header_only, in_imports = _open_state(profile=profile, line=lines[0])

    for idx in range(1, len(lines)):
        line = lines[idx]
        if not profile.is_chunk_boundary(line):
            if not _is_continuation(line):
                header_only = False
                in_imports = False
            continue

        if header_only:
            # decorator 之后的定义行属于同一个 chunk
            if not profile.is_header_line(line):
                header_only = False
                in_imports = profile.chunk_type_of(line) == "import"
            continue
        if in_imports and not profile.is_header_line(line) and profile.chunk_type_of(line) == "import":
            continue

        spans.append((start, idx - 1))
        start = idx
        header_only, in_imports = _open_state(profile=profile, line=line)

    spans.append((start, len(lines) - 1))
    return spans


def _open_state(profile: LanguageProfile, line: str) -> tuple[bool, bool]:
    if profile.is_header_line(line):
        return True, False
    is_import = profile.is_chunk_boundary(line) and profile.chunk_type_of(line) == "import"
    return False, is_import


def _is_continuation(line: str) -> bool:
    """空行、缩进行、以右括号开头的行不会打断 header/import 的连续性。"""
    if not line.strip():
        return True
    if line[0].isspace():
        return True
    return line.lstrip().startswith(_CLOSING_BRACKETS)


def _span_to_chunk(
    profile: LanguageProfile,
    language: str,
    path: str,
    lines: list[str],
    start: int,
    end: int,
    last_modified: datetime,
) -> CodeChunk:
    span_lines = lines[start : end + 1]
    content = "\n".join(span_lines)
    defining = _defining_line(profile=profile, span_lines=span_lines)
    chunk_type = profile.chunk_type_of(defining)
    first_line = span_lines[0].strip()
    return CodeChunk(
        id=_sha256(f"{path}:{start + 1}:{content}")[:16],
        filePath=path,
        fileName=os.path.basename(path),
        content=content,
        language=language,
        chunkType=chunk_type,
        functionName=profile.extract_name(defining),
        dependencies=sorted(profile.extract_dependency_targets(content)),
        semanticSummary=f"{chunk_type}: {first_line[:SUMMARY_PREFIX_CHARS]}",
        keywords=extract_keywords(text=content),
        complexity=complexity_level(score=complexity_score(text=content)),
        lastModified=last_modified,
        lineRange=LineRange(start=start + 1, end=end + 1),
    )


def _defining_line(profile: LanguageProfile, span_lines: list[str]) -> str:
    """chunk 的类型与名字取自第一个非 header 的边界行；residual chunk 取第一个非空行。"""
    for line in span_lines:
        if profile.is_chunk_boundary(line) and not profile.is_header_line(line):
            return line
    for line in span_lines:
        if line.strip():
            return line
    return span_lines[0]


def tokenize(text: str) -> list[str]:
    """小写化、拆 camelCase、去标点；保留长度 > 2 且非纯数字的 token（有重复、保持顺序）。"""
    split = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    return [t for t in _TOKEN.findall(split.lower()) if len(t) > 2 and not t.isdigit()]


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    keywords: list[str] = []
    for token in tokenize(text):
        if token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= limit:
            break
    return keywords


def complexity_score(text: str) -> int:
    """行数 + 2×分支关键字 + 3×嵌套括号对。"""
    line_count = len(split_lines(text))
    branches = len(_BRANCH_KEYWORDS.findall(text))
    return line_count + 2 * branches + 3 * _nested_brace_pairs(text)


def complexity_level(score: int) -> Complexity:
    if score <= LOW_COMPLEXITY_MAX:
        return "low"
    if score <= MEDIUM_COMPLEXITY_MAX:
        return "medium"
    return "high"


def _nested_brace_pairs(text: str) -> int:
    depth = 0
    nested = 0
    for char in text:
        if char == "{":
            if depth > 0:
                nested += 1
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
    return nested


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
