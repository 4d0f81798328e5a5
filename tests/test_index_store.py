from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from codeassist.errors import IndexNotFoundError
from codeassist.errors import SchemaViolationError
from codeassist.indexing.chunker import extract_chunks
from codeassist.infra.locks import KeyedLocks
from codeassist.storage.index_store import ProjectIndexStore
from codeassist.storage.index_store import detect_file_purpose
from codeassist.storage.models import summarize_index

APP_PY = "from .utils import slugify\n\n\ndef handler(title):\n    return slugify(title)\n"
UTILS_PY = "import re\n\n\ndef slugify(text):\n    return re.sub(r'\\W+', '-', text)\n"
INDEX_JS = "import { login } from './auth';\n\nfunction main() {\n  login();\n}\n"
AUTH_JS = "export function login() {\n  return true;\n}\n"


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(minutes=1)
        return self.now


def _chunks(path: str, text: str):
    return extract_chunks(file_text=text, file_path=path)


def _corpus():
    return (
        _chunks("src/app.py", APP_PY)
        + _chunks("src/utils.py", UTILS_PY)
        + _chunks("web/index.js", INDEX_JS)
        + _chunks("web/auth.js", AUTH_JS)
    )


def test_get_missing_project_raises() -> None:
    store = ProjectIndexStore()
    assert store.query("nope") is None
    with pytest.raises(IndexNotFoundError) as exc_info:
        store.get("nope")
    assert exc_info.value.project_id == "nope"


def test_create_builds_structure_graph_and_clusters() -> None:
    store = ProjectIndexStore()
    index = store.create("demo", _corpus(), tree_paths=["docs/guide.md"])

    assert index.version == 1
    assert store.project_ids() == ["demo"]
    assert index.dependencyGraph["src/app.py"] == ["src/utils.py"]
    assert index.dependencyGraph["src/utils.py"] == []
    assert index.dependencyGraph["web/index.js"] == ["web/auth.js"]

    assert index.fileStructure["src"].type == "folder"
    assert index.fileStructure["src"].children == ["src/app.py", "src/utils.py"]
    assert index.fileStructure["src/utils.py"].purpose == "utility"
    assert index.fileStructure["docs/guide.md"].language == "markdown"

    ids = {chunk.id for chunk in index.chunks}
    assert {cluster.clusterId for cluster in index.semanticClusters} == {"import", "function"}
    for cluster in index.semanticClusters:
        assert set(cluster.chunkIds) <= ids
        assert cluster.theme == f"{cluster.clusterId.capitalize()} Components"


def test_refresh_replaces_wholesale_and_bumps_version() -> None:
    clock = _Clock()
    store = ProjectIndexStore(clock=clock)
    first = store.create("demo", _corpus())
    second = store.refresh("demo", _chunks("src/utils.py", UTILS_PY))

    assert second.version == first.version + 1
    assert {chunk.filePath for chunk in second.chunks} == {"src/utils.py"}
    assert second.createdAt > first.createdAt
    assert store.get("demo") is second


def test_update_replaces_changed_file_and_keeps_others() -> None:
    clock = _Clock()
    store = ProjectIndexStore(clock=clock)
    first = store.create("demo", _corpus())

    new_auth = "export function login() {\n  return false;\n}\n\nexport function logout() {}\n"
    updated = store.update(
        "demo",
        {"web/auth.js": _chunks("web/auth.js", new_auth), "web/new.js": _chunks("web/new.js", "const a = 1;\n")},
        deleted_paths=["src/app.py"],
    )

    assert updated.version == 2
    assert updated.createdAt == first.createdAt
    paths = {chunk.filePath for chunk in updated.chunks}
    assert paths == {"src/utils.py", "web/index.js", "web/auth.js", "web/new.js"}
    auth_names = [c.functionName for c in updated.chunks if c.filePath == "web/auth.js"]
    assert auth_names == ["login", "logout"]
    assert "src/app.py" not in updated.fileStructure


def test_invalid_update_is_rejected_and_old_version_kept() -> None:
    store = ProjectIndexStore()
    first = store.create("demo", _corpus())

    wrong_path = _chunks("web/other.js", AUTH_JS)
    with pytest.raises(SchemaViolationError):
        store.update("demo", {"web/auth.js": wrong_path})

    overlapping = _chunks("web/auth.js", AUTH_JS)
    with pytest.raises(SchemaViolationError):
        store.update("demo", {"web/auth.js": overlapping + overlapping})

    assert store.get("demo") is first
    assert store.get("demo").version == 1


def test_update_without_existing_index_creates_one() -> None:
    store = ProjectIndexStore()
    index = store.update("fresh", {"web/auth.js": _chunks("web/auth.js", AUTH_JS)})
    assert index.version == 1


def test_summarize_index() -> None:
    store = ProjectIndexStore()
    summary = summarize_index(index=store.create("demo", _corpus()))
    assert summary.totalFiles == 4
    assert summary.languageDistribution == {"javascript": 2, "python": 2}
    assert summary.totalChunks == len(store.get("demo").chunks)


def test_detect_file_purpose() -> None:
    assert detect_file_purpose("tests/test_app.py") == "test"
    assert detect_file_purpose("src/components/Button.tsx") == "component"
    assert detect_file_purpose("src/services/billing.ts") == "service"
    assert detect_file_purpose("src/main.py") == "general"


def test_keyed_locks() -> None:
    locks = KeyedLocks()
    assert locks.lock_for("a") is locks.lock_for("a")
    assert locks.lock_for("a") is not locks.lock_for("b")
    with pytest.raises(ValueError):
        locks.lock_for("")
    with locks.hold("a"):
        assert locks.lock_for("a").locked()
    assert not locks.lock_for("a").locked()


class _GatedClock(_Clock):
    """armed 之后每次取时间都会停住，直到 release：用来卡住一个进行中的写。"""

    def __init__(self) -> None:
        super().__init__()
        self.armed = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self) -> datetime:
        if self.armed:
            self.entered.set()
            self.release.wait(timeout=5)
        return super().__call__()


def test_concurrent_updates_lose_no_writes() -> None:
    store = ProjectIndexStore()

    def write(i: int) -> None:
        path = f"src/f{i}.py"
        store.update("demo", {path: _chunks(path, f"def f{i}():\n    return {i}\n")})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(write, range(50)))

    index = store.get("demo")
    assert index.version == 50
    assert {chunk.filePath for chunk in index.chunks} == {f"src/f{i}.py" for i in range(50)}
    assert len(index.chunks) == 50


def test_reader_sees_last_commit_while_write_in_progress() -> None:
    clock = _GatedClock()
    store = ProjectIndexStore(clock=clock)
    first = store.create("demo", _corpus())

    clock.armed = True
    refresher = threading.Thread(target=store.refresh, args=("demo", _chunks("src/utils.py", UTILS_PY)))
    refresher.start()
    assert clock.entered.wait(timeout=5)

    # 写锁被占着：读不等待，拿到的是上一次提交的快照
    assert store.query("demo") is first
    assert store.get("demo").version == 1

    # 第二个写者排在后面
    updater = threading.Thread(target=store.update, args=("demo", {"web/auth.js": _chunks("web/auth.js", AUTH_JS)}))
    updater.start()
    updater.join(timeout=0.2)
    assert updater.is_alive()
    assert store.get("demo") is first

    clock.release.set()
    refresher.join(timeout=5)
    updater.join(timeout=5)
    assert not refresher.is_alive() and not updater.is_alive()

    latest = store.get("demo")
    assert latest.version == 3
    assert {chunk.filePath for chunk in latest.chunks} == {"src/utils.py", "web/auth.js"}
