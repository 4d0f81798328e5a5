from __future__ import annotations

"""
按 key 串行化的写锁（single-writer-per-key）。

当前提供：
- `KeyedLocks`：每个 key 一把 `threading.Lock`，不同 key 之间互不阻塞
- 读路径不需要锁：读的是已提交的不可变快照

后续扩展点：
- 多进程部署时替换为 Redis/DB advisory lock（接口保持 `hold(key)` 不变）
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class KeyedLocks:
    """key -> Lock 的注册表；注册表本身由一把小锁保护。"""

    _locks: dict[str, threading.Lock] = field(default_factory=dict)
    _guard: threading.Lock = field(default_factory=threading.Lock)

    def lock_for(self, key: str) -> threading.Lock:
        if not key:
            raise ValueError("key must be non-empty")
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """持有 key 对应的写锁；同一个 key 同一时刻最多一个 writer。"""
        lock = self.lock_for(key)
        with lock:
            yield
