from __future__ import annotations

import os
import re
from typing import Protocol

IGNORED_DIRS = {".git", "node_modules", ".venv", "venv", "dist", "build", "__pycache__", ".next", ".idea"}
DEFAULT_EXTENSIONS = {
    ".py",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".go",
    ".java",
    ".rs",
    ".md",
    ".json",
    ".yaml",
    ".yml",
    ".toml",
    ".css",
    ".html",
}

_TREE_CONNECTOR = re.compile(r"[├└]──\s?")
_SIZE_SUFFIX = re.compile(r"\s+\((?:\d+ chars|empty)\)$")


class FileSystemProvider(Protocol):
    """只读的文件来源；路径统一为相对根目录的 `/` 分隔路径。"""

    def list_files(self) -> list[str]:
        ...

    def read_file(self, path: str) -> str:
        ...


class LocalFileSystemProvider:
    def __init__(self, root: str, allowed_extensions: set[str] | None = None, max_bytes: int = 1_000_000) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if not os.path.isdir(root):
            raise ValueError(f"root is not a directory: {root}")
        self._root = root
        self._allowed_extensions = allowed_extensions or DEFAULT_EXTENSIONS
        self._max_bytes = max_bytes

    def list_files(self) -> list[str]:
        files: list[str] = []
        for root, dirs, filenames in os.walk(self._root):
            dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
            for name in filenames:
                path = os.path.join(root, name)
                ext = os.path.splitext(name)[1].lower()
                if ext not in self._allowed_extensions:
                    continue
                try:
                    size = os.path.getsize(path)
                except OSError:
                    continue
                if size > self._max_bytes:
                    continue
                files.append(os.path.relpath(path, self._root).replace(os.sep, "/"))
        return sorted(files)

    def read_file(self, path: str) -> str:
        full_path = os.path.normpath(os.path.join(self._root, path))
        if os.path.commonpath([os.path.abspath(full_path), os.path.abspath(self._root)]) != os.path.abspath(self._root):
            raise ValueError(f"path escapes provider root: {path}")
        with open(full_path, "r", encoding="utf-8", errors="ignore") as handle:
            return handle.read()


def parse_project_tree(tree: str) -> list[str]:
    """
    把 `├──` / `└──` 形式的项目树解析成文件路径列表。

    - 每层缩进 4 个字符（`│   ` 或空格），据此恢复父目录
    - 去掉 ` (N chars)` / ` (empty)` 这类大小后缀
    - 没有 connector 的非空行按完整路径处理（以 `/` 结尾的标题行忽略）
    - 只返回叶子节点（没有子项的条目）
    """
    entries: list[tuple[int, str]] = []
    for raw in tree.splitlines():
        if not raw.strip():
            continue
        match = _TREE_CONNECTOR.search(raw)
        if match is None:
            # 根目录标题行（`project/`）不是文件
            if not raw.strip().endswith("/"):
                entries.append((-1, _clean_name(raw.strip())))
            continue
        depth = match.start() // 4
        entries.append((depth, _clean_name(raw[match.end() :])))

    paths: list[str] = []
    stack: list[str] = []
    for idx, (depth, name) in enumerate(entries):
        if not name:
            continue
        if depth < 0:
            stack = []
            paths.append(name.strip("/"))
            continue
        del stack[depth:]
        full = "/".join(stack + [name])
        next_depth = entries[idx + 1][0] if idx + 1 < len(entries) else -1
        if next_depth > depth:
            stack.append(name)
        else:
            paths.append(full)
    return list(dict.fromkeys(paths))


def _clean_name(name: str) -> str:
    cleaned = _SIZE_SUFFIX.sub("", name.strip())
    return cleaned.rstrip("/").strip()
