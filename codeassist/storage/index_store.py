"""
Project Index store（内存版，按 project 版本化）。

读写模型：
- **写**（create/update/refresh）：同一个 project 串行（`KeyedLocks`），不同 project 并行
- **读**（query/get）：直接读最近一次提交的不可变快照，不等待进行中的写
- **提交**：新快照构建完成后一次性替换字典里的引用（读者要么看到旧版本，要么看到新版本）

失败策略：
- 变更的 chunk 不合法（路径不匹配、重叠、乱序、id 重复）直接拒绝，旧版本保持不变
"""

from __future__ import annotations

import logging
import posixpath
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone

from codeassist.errors import IndexNotFoundError
from codeassist.errors import SchemaViolationError
from codeassist.indexing.languages import infer_language_from_path
from codeassist.infra.locks import KeyedLocks
from codeassist.storage.models import CHUNK_TYPES
from codeassist.storage.models import CodeChunk
from codeassist.storage.models import FileNode
from codeassist.storage.models import ProjectIndex
from codeassist.storage.models import SemanticCluster

logger = logging.getLogger(__name__)

MAX_CLUSTER_KEYWORDS = 20
_MODULE_INDEX_NAMES = {"__init__", "index", "mod", "main"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectIndexStore:
    """每个 projectId 至多一个索引；写串行、读无锁。"""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._snapshots: dict[str, ProjectIndex] = {}
        self._tree_paths: dict[str, tuple[str, ...]] = {}
        self._locks = KeyedLocks()
        self._clock = clock

    def query(self, project_id: str) -> ProjectIndex | None:
        return self._snapshots.get(project_id)

    def get(self, project_id: str) -> ProjectIndex:
        index = self._snapshots.get(project_id)
        if index is None:
            raise IndexNotFoundError(project_id)
        return index

    def project_ids(self) -> list[str]:
        return sorted(self._snapshots)

    def create(self, project_id: str, chunks: Sequence[CodeChunk], tree_paths: Iterable[str] = ()) -> ProjectIndex:
        """新建索引；已存在时等价于 refresh（整体替换，版本 +1）。"""
        files = _group_by_file(chunks=chunks)
        with self._locks.hold(project_id):
            return self._commit(project_id=project_id, files=files, tree_paths=tuple(tree_paths), keep_created_at=False)

    def refresh(self, project_id: str, all_chunks: Sequence[CodeChunk], tree_paths: Iterable[str] = ()) -> ProjectIndex:
        files = _group_by_file(chunks=all_chunks)
        with self._locks.hold(project_id):
            return self._commit(project_id=project_id, files=files, tree_paths=tuple(tree_paths), keep_created_at=False)

    def update(
        self,
        project_id: str,
        changed_file_chunks: Mapping[str, Sequence[CodeChunk]],
        deleted_paths: Iterable[str] = (),
        tree_paths: Iterable[str] = (),
    ) -> ProjectIndex:
        """
        增量更新：

        - `changed_file_chunks`：path -> 该文件**全部**新 chunk（空列表表示文件变空）
        - 已有文件整体替换、新文件追加、`deleted_paths` 移除，其余文件原样保留
        - project 尚无索引时等价于 create
        """
        validated = {path: _validate_file_chunks(path=path, chunks=chunks) for path, chunks in changed_file_chunks.items()}
        deleted = set(deleted_paths)
        with self._locks.hold(project_id):
            current = self._snapshots.get(project_id)
            files: dict[str, list[CodeChunk]] = {}
            if current is not None:
                files = _group_by_file(chunks=current.chunks)
            for path in deleted:
                files.pop(path, None)
            files.update(validated)
            previous_tree = tuple(p for p in self._tree_paths.get(project_id, ()) if p not in deleted)
            return self._commit(
                project_id=project_id,
                files=files,
                tree_paths=previous_tree + tuple(tree_paths),
                keep_created_at=current is not None,
            )

    def _commit(
        self,
        project_id: str,
        files: dict[str, list[CodeChunk]],
        tree_paths: tuple[str, ...],
        keep_created_at: bool,
    ) -> ProjectIndex:
        """调用方必须持有该 project 的写锁。"""
        previous = self._snapshots.get(project_id)
        chunks = [chunk for file_chunks in files.values() for chunk in file_chunks]
        _check_unique_ids(chunks=chunks)

        languages: dict[str, str | None] = {}
        for path in tree_paths:
            inferred = infer_language_from_path(path=path)
            languages[path] = None if inferred == "unknown" else inferred
        for path, file_chunks in files.items():
            languages[path] = file_chunks[0].language if file_chunks else languages.get(path)

        created_at = previous.createdAt if keep_created_at and previous is not None else self._clock()
        index = ProjectIndex(
            projectId=project_id,
            chunks=chunks,
            fileStructure=build_file_structure(files=languages),
            dependencyGraph=build_dependency_graph(files=files),
            semanticClusters=build_semantic_clusters(chunks=chunks),
            createdAt=created_at,
            version=previous.version + 1 if previous is not None else 1,
        )
        # 原子提交：替换引用
        self._snapshots[project_id] = index
        self._tree_paths[project_id] = tuple(dict.fromkeys(tree_paths))
        logger.info(f"Committed index: project={project_id}, version={index.version}, chunks={len(chunks)}")
        return index


def _group_by_file(chunks: Sequence[CodeChunk]) -> dict[str, list[CodeChunk]]:
    grouped: dict[str, list[CodeChunk]] = {}
    for chunk in chunks:
        grouped.setdefault(chunk.filePath, []).append(chunk)
    for path, file_chunks in grouped.items():
        _validate_file_chunks(path=path, chunks=file_chunks)
    return grouped


def _validate_file_chunks(path: str, chunks: Sequence[CodeChunk]) -> list[CodeChunk]:
    """一个文件的 chunk 必须属于该路径、按起始行排序且互不重叠。"""
    validated = list(chunks)
    for chunk in validated:
        if chunk.filePath != path:
            raise SchemaViolationError(f"Chunk {chunk.id} belongs to {chunk.filePath}, not {path}")
    for prev, curr in zip(validated, validated[1:]):
        if curr.lineRange.start <= prev.lineRange.end:
            raise SchemaViolationError(
                f"Chunks of {path} overlap or are unordered at lines "
                f"{prev.lineRange.start}-{prev.lineRange.end} / {curr.lineRange.start}-{curr.lineRange.end}"
            )
    return validated


def _check_unique_ids(chunks: Sequence[CodeChunk]) -> None:
    counts = Counter(chunk.id for chunk in chunks)
    duplicated = sorted(chunk_id for chunk_id, count in counts.items() if count > 1)
    if duplicated:
        raise SchemaViolationError(f"Duplicate chunk ids: {', '.join(duplicated)}")


def detect_file_purpose(path: str) -> str:
    """按路径推断文件角色（确定性）。"""
    lowered = path.lower()
    name = posixpath.basename(lowered)
    if "test" in lowered or name.endswith((".spec.ts", ".spec.js")):
        return "test"
    if "component" in lowered:
        return "component"
    if "hook" in lowered:
        return "hook"
    if "util" in lowered or "helper" in lowered:
        return "utility"
    if "service" in lowered:
        return "service"
    if "api" in lowered:
        return "api"
    if "type" in lowered or name.endswith(".d.ts"):
        return "types"
    return "general"


def build_file_structure(files: Mapping[str, str | None]) -> dict[str, FileNode]:
    """path -> language 映射展开为 path -> 节点（文件 + 所有祖先目录）。"""
    nodes: dict[str, FileNode] = {}
    children: dict[str, set[str]] = {}
    for path, language in files.items():
        parts = [part for part in path.split("/") if part]
        for depth in range(1, len(parts)):
            folder = "/".join(parts[:depth])
            children.setdefault(folder, set()).add("/".join(parts[: depth + 1]))
        nodes["/".join(parts)] = FileNode(type="file", language=language, purpose=detect_file_purpose(path))
    for folder, kids in children.items():
        if folder in nodes:
            continue
        nodes[folder] = FileNode(type="folder", children=sorted(kids))
    return dict(sorted(nodes.items()))


def build_dependency_graph(files: Mapping[str, Sequence[CodeChunk]]) -> dict[str, list[str]]:
    """file -> 它依赖的（已索引）文件列表；外部依赖不出现在图里。"""
    module_keys = _module_keys(paths=files.keys())
    graph: dict[str, list[str]] = {}
    for path in sorted(files):
        targets: set[str] = set()
        for chunk in files[path]:
            targets.update(chunk.dependencies)
        resolved: set[str] = set()
        for target in targets:
            hit = resolve_dependency(importer=path, target=target, module_keys=module_keys)
            if hit is not None and hit != path:
                resolved.add(hit)
        graph[path] = sorted(resolved)
    return graph


def _module_keys(paths: Iterable[str]) -> list[tuple[str, str]]:
    """为每个文件生成可被 import 命中的 key（去扩展名；`__init__`/`index` 等映射到目录）。"""
    keys: list[tuple[str, str]] = []
    for path in sorted(paths):
        stem = posixpath.splitext(path)[0]
        keys.append((stem, path))
        if posixpath.basename(stem) in _MODULE_INDEX_NAMES:
            keys.append((posixpath.dirname(stem), path))
    return keys


def resolve_dependency(importer: str, target: str, module_keys: Sequence[tuple[str, str]]) -> str | None:
    base_dir = posixpath.dirname(importer)
    if target.startswith(("./", "../")):
        candidate = posixpath.normpath(posixpath.join(base_dir, target))
        candidate = posixpath.splitext(candidate)[0] if posixpath.splitext(candidate)[1] else candidate
        return _exact_match(candidate=candidate, module_keys=module_keys)
    if target.startswith("."):
        dots = len(target) - len(target.lstrip("."))
        folder = base_dir
        for _ in range(dots - 1):
            folder = posixpath.dirname(folder)
        rest = target[dots:].replace(".", "/")
        candidate = posixpath.join(folder, rest) if rest else folder
        return _exact_match(candidate=candidate, module_keys=module_keys)

    normalized = target.replace("::", "/").replace(".", "/")
    for prefix in ("crate/", "self/", "super/"):
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix) :]
    if not normalized:
        return None
    for key, path in module_keys:
        if key == normalized or key.endswith("/" + normalized):
            return path
    return None


def _exact_match(candidate: str, module_keys: Sequence[tuple[str, str]]) -> str | None:
    for key, path in module_keys:
        if key == candidate:
            return path
    return None


def build_semantic_clusters(chunks: Sequence[CodeChunk]) -> list[SemanticCluster]:
    """按 chunkType 聚类；cluster 只引用本次快照中存在的 chunk id。"""
    clusters: list[SemanticCluster] = []
    for chunk_type in CHUNK_TYPES:
        members = [chunk for chunk in chunks if chunk.chunkType == chunk_type]
        if not members:
            continue
        counts: Counter[str] = Counter()
        for chunk in members:
            counts.update(chunk.keywords)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        clusters.append(
            SemanticCluster(
                clusterId=chunk_type,
                theme=f"{chunk_type.capitalize()} Components",
                chunkIds=[chunk.id for chunk in members],
                keywords=[keyword for keyword, _ in ranked[:MAX_CLUSTER_KEYWORDS]],
            )
        )
    return clusters
