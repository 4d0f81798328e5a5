from __future__ import annotations

from datetime import datetime, timezone

from codeassist.indexing.chunker import complexity_level
from codeassist.indexing.chunker import complexity_score
from codeassist.indexing.chunker import extract_chunks
from codeassist.indexing.chunker import extract_keywords
from codeassist.indexing.chunker import split_line_endings
from codeassist.indexing.chunker import tokenize
from codeassist.storage.models import EPOCH

PYTHON_SOURCE = "\n".join(
    [
        '"""Module docs."""',
        "import os",
        "from typing import Any",
        "",
        "",
        "@decorator",
        "def add(a: int, b: int) -> int:",
        "    return a + b",
        "",
        "",
        "class Store:",
        "    def get(self) -> Any:",
        "        return os.getcwd()",
    ]
)


def _assert_covering(chunks, line_count: int) -> None:
    assert chunks[0].lineRange.start == 1
    assert chunks[-1].lineRange.end == line_count
    for prev, curr in zip(chunks, chunks[1:]):
        assert curr.lineRange.start == prev.lineRange.end + 1


def test_two_function_file_extracts_two_contiguous_chunks() -> None:
    chunks = extract_chunks(file_text="function foo(){}\nfunction bar(){}", file_path="src/a.js")
    assert [c.functionName for c in chunks] == ["foo", "bar"]
    assert [c.chunkType for c in chunks] == ["function", "function"]
    assert chunks[0].lineRange.end + 1 == chunks[1].lineRange.start
    _assert_covering(chunks, line_count=2)


def test_unicode_line_separator_does_not_shift_line_numbers() -> None:
    text = "function foo() {\n  const s = 'a\u2028b';\n}\nfunction bar(){}"
    chunks = extract_chunks(file_text=text, file_path="a.js")
    assert [c.functionName for c in chunks] == ["foo", "bar"]
    foo, bar = chunks
    assert (bar.lineRange.start, bar.lineRange.end) == (4, 4)
    assert "\u2028" in foo.content
    _assert_covering(chunks, line_count=4)


def test_form_feed_stays_inside_its_line() -> None:
    text = "def a():\n    return 1\n\x0c\ndef b():\n    return 2\n"
    chunks = extract_chunks(file_text=text, file_path="m.py")
    a, b = chunks
    assert (a.lineRange.start, a.lineRange.end) == (1, 3)
    assert a.content.endswith("\x0c")
    assert (b.lineRange.start, b.lineRange.end) == (4, 5)
    assert complexity_score(text="x = 1\x0cy = 2") == 1


def test_crlf_lines_are_numbered_like_lf() -> None:
    chunks = extract_chunks(file_text="def a():\r\n    return 1\r\n\r\ndef b():\r\n    pass\r\n", file_path="m.py")
    a, b = chunks
    assert a.content == "def a():\n    return 1\n"
    assert (b.lineRange.start, b.lineRange.end) == (4, 5)


def test_split_line_endings() -> None:
    assert split_line_endings("a\r\nb\nc") == (["a", "b", "c"], ["\r\n", "\n", ""])
    assert split_line_endings("x\n") == (["x"], ["\n"])
    assert split_line_endings("") == ([], [])


def test_python_chunks_are_ordered_and_cover_file() -> None:
    chunks = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py")
    kinds = [(c.chunkType, c.functionName) for c in chunks]
    assert kinds == [
        ("documentation", None),
        ("import", None),
        ("function", "add"),
        ("class", "Store"),
    ]
    _assert_covering(chunks, line_count=PYTHON_SOURCE.count("\n") + 1)


def test_decorator_attaches_to_definition() -> None:
    chunks = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py")
    add = next(c for c in chunks if c.functionName == "add")
    assert add.content.startswith("@decorator")
    assert add.lineRange.start == 6


def test_consecutive_imports_form_one_chunk_with_dependencies() -> None:
    chunks = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py")
    imports = [c for c in chunks if c.chunkType == "import"]
    assert len(imports) == 1
    assert imports[0].dependencies == ["os", "typing"]


def test_extraction_is_deterministic() -> None:
    first = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py")
    second = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py")
    assert [c.model_dump() for c in first] == [c.model_dump() for c in second]
    assert len({c.id for c in first}) == len(first)


def test_chunk_fields() -> None:
    modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
    chunks = extract_chunks(file_text=PYTHON_SOURCE, file_path="src/store.py", last_modified=modified)
    store = chunks[-1]
    assert store.fileName == "store.py"
    assert store.language == "python"
    assert store.semanticSummary == "class: class Store:"
    assert store.lastModified == modified
    assert len(store.keywords) <= 10
    assert extract_chunks(file_text="x = 1", file_path="a.py")[0].lastModified == EPOCH


def test_empty_file_has_no_chunks() -> None:
    assert extract_chunks(file_text="", file_path="empty.py") == []


def test_file_without_boundaries_is_one_residual_chunk() -> None:
    chunks = extract_chunks(file_text="# notes\nvalue = 1\n", file_path="settings.py")
    assert len(chunks) == 1
    assert chunks[0].chunkType == "documentation"
    assert chunks[0].functionName is None


def test_unknown_language_uses_generic_profile() -> None:
    source = "#include <stdio.h>\n\nint main(void) {\n  return 0;\n}\n"
    chunks = extract_chunks(file_text=source, file_path="main.c", language="c")
    assert [c.chunkType for c in chunks] == ["import", "function"]
    assert chunks[1].functionName == "main"


def test_tokenize_splits_camel_case() -> None:
    assert tokenize("getUserById(42)") == ["get", "user"]
    assert extract_keywords("authToken auth_token token", limit=2) == ["auth", "token"]


def test_complexity_is_monotonic_in_branches() -> None:
    base = "def f(x):\n    return x"
    score = complexity_score(text=base)
    for keyword in ("if", "for", "while"):
        grown = f"{base}\n    {keyword} x: pass"
        assert complexity_score(text=grown) >= score
        base = grown
        score = complexity_score(text=grown)


def test_complexity_level_thresholds() -> None:
    assert complexity_level(score=20) == "low"
    assert complexity_level(score=21) == "medium"
    assert complexity_level(score=50) == "medium"
    assert complexity_level(score=51) == "high"
    assert complexity_score(text="a {\n b { c }\n}") == 3 + 3
