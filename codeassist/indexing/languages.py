"""
Language Profile Registry（非 AI，纯确定性）。

职责：
- 每种语言一组**独立的小纯函数**：chunk 边界判断、chunk 类型、名字提取、依赖提取
- 用一张按 language id 索引的表保存，新增语言不需要改动已有条目
- 未知语言回退到 generic profile（关键字 + 括号规则）

注意：
- 行级函数只看单行，不维护跨行状态；依赖提取看整个 chunk 文本
- 边界只认顶格（无缩进）的定义行，嵌套定义归属外层 chunk
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from codeassist.storage.models import ChunkType

LineTypeFn = Callable[[re.Match[str]], ChunkType]


@dataclass(frozen=True)
class LanguageProfile:
    """一种语言的 chunk 规则集合（数据，不是继承体系）。"""

    language: str
    is_chunk_boundary: Callable[[str], bool]
    chunk_type_of: Callable[[str], ChunkType]
    extract_name: Callable[[str], str | None]
    extract_dependency_targets: Callable[[str], set[str]]
    # 依附在下一个定义上的行（decorator / annotation / attribute）
    is_header_line: Callable[[str], bool]


@dataclass(frozen=True)
class _Rule:
    pattern: re.Pattern[str]
    chunk_type: ChunkType | LineTypeFn
    name_group: str | None = None

    def type_for(self, match: re.Match[str]) -> ChunkType:
        if callable(self.chunk_type):
            return self.chunk_type(match)
        return self.chunk_type


def _build_profile(
    language: str,
    rules: tuple[_Rule, ...],
    residual_type: Callable[[str], ChunkType],
    dependencies: Callable[[str], set[str]],
    header: re.Pattern[str] | None = None,
) -> LanguageProfile:
    """把规则表组装成 profile 的四个（加 header）纯函数。"""

    def first_match(line: str) -> tuple[_Rule, re.Match[str]] | None:
        for rule in rules:
            match = rule.pattern.match(line)
            if match is not None:
                return rule, match
        return None

    def is_header_line(line: str) -> bool:
        return header is not None and header.match(line) is not None

    def is_chunk_boundary(line: str) -> bool:
        return is_header_line(line) or first_match(line) is not None

    def chunk_type_of(line: str) -> ChunkType:
        found = first_match(line)
        if found is None:
            return residual_type(line)
        rule, match = found
        return rule.type_for(match)

    def extract_name(line: str) -> str | None:
        found = first_match(line)
        if found is None:
            return None
        rule, match = found
        if rule.name_group is None:
            return None
        return match.group(rule.name_group)

    return LanguageProfile(
        language=language,
        is_chunk_boundary=is_chunk_boundary,
        chunk_type_of=chunk_type_of,
        extract_name=extract_name,
        extract_dependency_targets=dependencies,
        is_header_line=is_header_line,
    )


def _residual_type(comment_prefixes: tuple[str, ...]) -> Callable[[str], ChunkType]:
    def residual(line: str) -> ChunkType:
        stripped = line.strip()
        if any(stripped.startswith(prefix) for prefix in comment_prefixes):
            return "documentation"
        return "config"

    return residual


# ---------------------------------------------------------------- python

_PY_IMPORT = re.compile(r"^\s*import\s+(?P<mods>[\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)")
_PY_FROM = re.compile(r"^\s*from\s+(?P<mod>\.*[\w.]*)\s+import\b")


def _python_def_type(match: re.Match[str]) -> ChunkType:
    if match.group("name").startswith("test"):
        return "test"
    return "function"


def _python_class_type(match: re.Match[str]) -> ChunkType:
    name = match.group("name")
    bases = match.group("bases") or ""
    if name.startswith("Test"):
        return "test"
    if "Protocol" in bases or "ABC" in bases or "TypedDict" in bases:
        return "interface"
    return "class"


def _python_dependencies(text: str) -> set[str]:
    targets: set[str] = set()
    for line in text.split("\n"):
        match = _PY_IMPORT.match(line)
        if match is not None:
            for part in match.group("mods").split(","):
                targets.add(part.split()[0])
            continue
        match = _PY_FROM.match(line)
        if match is not None and match.group("mod"):
            targets.add(match.group("mod"))
    return targets


PYTHON = _build_profile(
    language="python",
    rules=(
        _Rule(re.compile(r"^(?:async\s+)?def\s+(?P<name>\w+)"), _python_def_type, "name"),
        _Rule(re.compile(r"^class\s+(?P<name>\w+)\s*(?:\((?P<bases>[^)]*)\))?"), _python_class_type, "name"),
        _Rule(re.compile(r"^import\s+[\w.]"), "import"),
        _Rule(re.compile(r"^from\s+\.*[\w.]*\s+import\b"), "import"),
    ),
    residual_type=_residual_type(("#", '"""', "'''")),
    dependencies=_python_dependencies,
    header=re.compile(r"^@\w"),
)


# ------------------------------------------------- javascript / typescript

_JS_FROM = re.compile(r"""\bfrom\s+['"](?P<target>[^'"]+)['"]""")
_JS_BARE_IMPORT = re.compile(r"""^\s*import\s+['"](?P<target>[^'"]+)['"]""")
_JS_REQUIRE = re.compile(r"""\b(?:require|import)\s*\(\s*['"](?P<target>[^'"]+)['"]\s*\)""")


def _js_dependencies(text: str) -> set[str]:
    targets: set[str] = set()
    for line in text.split("\n"):
        for pattern in (_JS_FROM, _JS_BARE_IMPORT, _JS_REQUIRE):
            for match in pattern.finditer(line):
                targets.add(match.group("target"))
    return targets


def _js_callable_type(match: re.Match[str]) -> ChunkType:
    name = match.group("name")
    if name and name[0].isupper():
        return "component"
    return "function"


def _js_class_type(match: re.Match[str]) -> ChunkType:
    base = match.group("base") or ""
    if base.endswith("Component") or base.endswith("PureComponent"):
        return "component"
    if match.group("name").endswith("Test"):
        return "test"
    return "class"


_EXPORT = r"(?:export\s+(?:default\s+)?)?"

_JS_RULES: tuple[_Rule, ...] = (
    _Rule(re.compile(r"^import\b"), "import"),
    _Rule(re.compile(r"^export\s+(?:\*|\{[^}]*\})\s*(?:as\s+\w+\s+)?from\b"), "import"),
    _Rule(re.compile(r"^(?:describe|it|test)(?:\.\w+)?\s*\(\s*['\"`](?P<name>[^'\"`]*)"), "test", "name"),
    _Rule(
        re.compile(_EXPORT + r"(?:async\s+)?function\b\s*\*?\s*(?P<name>[A-Za-z_$][\w$]*)?"),
        _js_callable_type,
        "name",
    ),
    _Rule(
        re.compile(_EXPORT + r"(?:abstract\s+)?class\s+(?P<name>[A-Za-z_$][\w$]*)(?:\s+extends\s+(?P<base>[\w.$]+))?"),
        _js_class_type,
        "name",
    ),
    _Rule(
        re.compile(
            _EXPORT
            + r"(?:const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=\s*(?:async\s+)?"
            + r"(?:function\b|(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=>)"
        ),
        _js_callable_type,
        "name",
    ),
)

_TS_RULES: tuple[_Rule, ...] = (
    _Rule(re.compile(r"^(?:export\s+)?(?:declare\s+)?interface\s+(?P<name>\w+)"), "interface", "name"),
    _Rule(re.compile(r"^(?:export\s+)?(?:declare\s+)?type\s+(?P<name>\w+)\s*(?:<[^=]*>)?\s*="), "interface", "name"),
    _Rule(re.compile(r"^(?:export\s+)?(?:declare\s+)?(?:const\s+)?enum\s+(?P<name>\w+)"), "interface", "name"),
)

JAVASCRIPT = _build_profile(
    language="javascript",
    rules=_JS_RULES,
    residual_type=_residual_type(("//", "/*", "*")),
    dependencies=_js_dependencies,
)

TYPESCRIPT = _build_profile(
    language="typescript",
    rules=_TS_RULES + _JS_RULES,
    residual_type=_residual_type(("//", "/*", "*")),
    dependencies=_js_dependencies,
    header=re.compile(r"^@\w"),
)


# -------------------------------------------------------------------- go

_GO_SINGLE_IMPORT = re.compile(r"""^\s*import\s+(?:[\w.]+\s+)?"(?P<target>[^"]+)\"""")
_GO_BLOCK_ENTRY = re.compile(r"""^\s*(?:[\w.]+\s+)?"(?P<target>[^"]+)\"""")


def _go_dependencies(text: str) -> set[str]:
    targets: set[str] = set()
    in_block = False
    for line in text.split("\n"):
        stripped = line.strip()
        if in_block:
            if stripped.startswith(")"):
                in_block = False
                continue
            match = _GO_BLOCK_ENTRY.match(line)
            if match is not None:
                targets.add(match.group("target"))
            continue
        if re.match(r"^\s*import\s*\(", line):
            in_block = True
            continue
        match = _GO_SINGLE_IMPORT.match(line)
        if match is not None:
            targets.add(match.group("target"))
    return targets


def _go_func_type(match: re.Match[str]) -> ChunkType:
    name = match.group("name")
    if name.startswith(("Test", "Benchmark", "Example", "Fuzz")):
        return "test"
    return "function"


GO = _build_profile(
    language="go",
    rules=(
        _Rule(re.compile(r"^import\b"), "import"),
        _Rule(re.compile(r"^func\s+(?:\([^)]*\)\s*)?(?P<name>\w+)"), _go_func_type, "name"),
        _Rule(re.compile(r"^type\s+(?P<name>\w+)\s+interface\b"), "interface", "name"),
        _Rule(re.compile(r"^type\s+(?P<name>\w+)"), "class", "name"),
        _Rule(re.compile(r"^(?:var|const)\s+(?P<name>\w+)?"), "config", "name"),
    ),
    residual_type=_residual_type(("//", "/*", "*")),
    dependencies=_go_dependencies,
)


# ------------------------------------------------------------------ java

_JAVA_IMPORT = re.compile(r"^\s*import\s+(?:static\s+)?(?P<target>[\w.]+?)(?:\.\*)?\s*;")
_JAVA_MODIFIERS = r"(?:(?:public|private|protected|abstract|final|static|sealed|non-sealed|strictfp)\s+)*"


def _java_dependencies(text: str) -> set[str]:
    targets: set[str] = set()
    for line in text.split("\n"):
        match = _JAVA_IMPORT.match(line)
        if match is not None:
            targets.add(match.group("target"))
    return targets


def _java_type(match: re.Match[str]) -> ChunkType:
    kind = match.group("kind")
    if kind in ("interface", "@interface"):
        return "interface"
    if match.group("name").endswith("Test"):
        return "test"
    return "class"


JAVA = _build_profile(
    language="java",
    rules=(
        _Rule(re.compile(r"^import\s+"), "import"),
        _Rule(
            re.compile(r"^" + _JAVA_MODIFIERS + r"(?P<kind>class|interface|enum|record|@interface)\s+(?P<name>\w+)"),
            _java_type,
            "name",
        ),
    ),
    residual_type=_residual_type(("//", "/*", "*")),
    dependencies=_java_dependencies,
    header=re.compile(r"^@(?!interface\b)\w"),
)


# ------------------------------------------------------------------ rust

_RUST_USE = re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?use\s+(?P<target>[\w:]+?)(?:::\{|::\*|\s+as\s+|;)")
_RUST_CRATE = re.compile(r"^\s*extern\s+crate\s+(?P<target>\w+)")
_RUST_VIS = r"(?:pub(?:\([^)]*\))?\s+)?"


def _rust_dependencies(text: str) -> set[str]:
    targets: set[str] = set()
    for line in text.split("\n"):
        for pattern in (_RUST_USE, _RUST_CRATE):
            match = pattern.match(line)
            if match is not None:
                targets.add(match.group("target"))
    return targets


def _rust_mod_type(match: re.Match[str]) -> ChunkType:
    if match.group("name") == "tests":
        return "test"
    return "config"


RUST = _build_profile(
    language="rust",
    rules=(
        _Rule(re.compile(r"^" + _RUST_VIS + r"use\s+"), "import"),
        _Rule(re.compile(r"^extern\s+crate\s+"), "import"),
        _Rule(
            re.compile(r"^" + _RUST_VIS + r"(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(?P<name>\w+)"),
            "function",
            "name",
        ),
        _Rule(re.compile(r"^" + _RUST_VIS + r"(?:struct|enum|union)\s+(?P<name>\w+)"), "class", "name"),
        _Rule(re.compile(r"^" + _RUST_VIS + r"trait\s+(?P<name>\w+)"), "interface", "name"),
        _Rule(re.compile(r"^impl(?:<[^>]*>)?\s+(?:[\w:<>]+\s+for\s+)?(?P<name>\w+)"), "class", "name"),
        _Rule(re.compile(r"^" + _RUST_VIS + r"mod\s+(?P<name>\w+)"), _rust_mod_type, "name"),
        _Rule(re.compile(r"^" + _RUST_VIS + r"(?:const|static)\s+(?:mut\s+)?(?P<name>\w+)"), "config", "name"),
    ),
    residual_type=_residual_type(("//", "/*", "*")),
    dependencies=_rust_dependencies,
    header=re.compile(r"^#\["),
)


# -------------------------------------------------------------- markdown

MARKDOWN = _build_profile(
    language="markdown",
    rules=(_Rule(re.compile(r"^#{1,6}\s+(?P<name>\S.*?)\s*#*\s*$"), "documentation", "name"),),
    residual_type=lambda line: "documentation",
    dependencies=lambda text: set(),
)


# --------------------------------------------------------------- generic

_GENERIC_INCLUDE = re.compile(r"""^\s*#\s*include\s+[<"](?P<target>[^>"]+)[>"]""")


def _generic_dependencies(text: str) -> set[str]:
    targets = _python_dependencies(text) | _js_dependencies(text)
    for line in text.split("\n"):
        match = _GENERIC_INCLUDE.match(line)
        if match is not None:
            targets.add(match.group("target"))
    return targets


GENERIC = _build_profile(
    language="generic",
    rules=(
        _Rule(re.compile(r"^(?:#\s*include|import|using|require|use)\b"), "import"),
        _Rule(re.compile(r"^from\s+\S+\s+import\b"), "import"),
        _Rule(
            re.compile(
                r"^(?:export\s+)?(?:(?:public|private|protected|static|abstract|final)\s+)*"
                r"(?P<kind>class|struct|interface|trait|module)\s+(?P<name>\w+)"
            ),
            lambda m: "interface" if m.group("kind") in ("interface", "trait") else "class",
            "name",
        ),
        _Rule(
            re.compile(
                r"^(?:export\s+)?(?:(?:public|private|protected|static|async)\s+)*"
                r"(?:function|def|fn|func|sub|procedure)\s+(?P<name>\w+)"
            ),
            "function",
            "name",
        ),
        # 括号规则：顶格的 `type name(args) {` 形式（C/C++/C# 等）
        _Rule(
            re.compile(r"^(?!(?:if|for|while|switch|return|else)\b)[A-Za-z_][\w\s:<>,*&]{0,80}?\b(?P<name>\w+)\s*\([^;]*\)\s*\{\s*$"),
            "function",
            "name",
        ),
    ),
    residual_type=_residual_type(("#", "//", "/*", "*", "--", ";")),
    dependencies=_generic_dependencies,
)


PROFILES: Mapping[str, LanguageProfile] = {
    "python": PYTHON,
    "javascript": JAVASCRIPT,
    "typescript": TYPESCRIPT,
    "go": GO,
    "java": JAVA,
    "rust": RUST,
    "markdown": MARKDOWN,
    "generic": GENERIC,
}

_EXTENSION_LANGUAGES: Mapping[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".go": "go",
    ".java": "java",
    ".rs": "rust",
    ".md": "markdown",
    ".markdown": "markdown",
    ".rb": "ruby",
    ".php": "php",
    ".sql": "sql",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".css": "css",
    ".scss": "css",
    ".html": "html",
}


def get_profile(language: str | None) -> LanguageProfile:
    """按 language id 取 profile；未知语言回退 generic。"""
    if not language:
        return GENERIC
    return PROFILES.get(language.lower(), GENERIC)


def infer_language_from_path(path: str) -> str:
    """
    通过文件扩展名推断语言。

    这是一个非常“工程”的步骤：不需要 LLM，且必须确定性。
    """
    lowered = path.lower()
    dot = lowered.rfind(".")
    if dot == -1 or "/" in lowered[dot:]:
        return "unknown"
    return _EXTENSION_LANGUAGES.get(lowered[dot:], "unknown")
