from __future__ import annotations

from pathlib import Path

import pytest

from codeassist.indexing.file_scanner import LocalFileSystemProvider
from codeassist.indexing.file_scanner import parse_project_tree


def _write(root: Path, rel: str, content: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_list_files_honours_ignores_extensions_and_size(tmp_path: Path) -> None:
    _write(tmp_path, "src/app.py", "print('hi')\n")
    _write(tmp_path, "src/ui/Button.tsx", "export const Button = () => null;\n")
    _write(tmp_path, "node_modules/lib/index.js", "module.exports = {};\n")
    _write(tmp_path, "assets/logo.png", "not really a png")
    _write(tmp_path, "big.py", "x = 1\n" * 100)

    provider = LocalFileSystemProvider(root=str(tmp_path), max_bytes=200)
    assert provider.list_files() == ["src/app.py", "src/ui/Button.tsx"]
    assert provider.read_file("src/app.py") == "print('hi')\n"


def test_read_file_rejects_paths_outside_root(tmp_path: Path) -> None:
    provider = LocalFileSystemProvider(root=str(tmp_path))
    with pytest.raises(ValueError):
        provider.read_file("../secret.txt")


def test_provider_rejects_bad_arguments(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        LocalFileSystemProvider(root=str(tmp_path), max_bytes=0)
    with pytest.raises(ValueError):
        LocalFileSystemProvider(root=str(tmp_path / "missing"))


def test_parse_project_tree() -> None:
    tree = "\n".join(
        [
            "project/",
            "├── src/",
            "│   ├── app.py (120 chars)",
            "│   └── utils/",
            "│       └── helpers.ts (empty)",
            "└── README.md",
        ]
    )
    assert parse_project_tree(tree) == ["src/app.py", "src/utils/helpers.ts", "README.md"]


def test_parse_project_tree_accepts_plain_paths() -> None:
    assert parse_project_tree("src/a.py\n\nsrc/a.py\ndocs/guide.md\n") == ["src/a.py", "docs/guide.md"]
