from __future__ import annotations

import logging
import os
import resource
import time
from pathlib import Path
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


class HostStateView(Protocol):
    """Narrow view of host state handed to every step.

    Paths are absolute host paths (``/proc/meminfo``, ``/sys/bus/pci/...``).
    Implementations decide where they actually live.
    """

    def read_text(self, path: str) -> Optional[str]:
        ...

    def write_text(self, path: str, data: str, *, append: bool = False) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...

    def is_executable(self, path: str) -> bool:
        ...

    def listdir(self, path: str) -> List[str]:
        ...

    def realpath(self, path: str) -> str:
        ...

    def readlink(self, path: str) -> Optional[str]:
        ...

    def makedirs(self, path: str) -> None:
        ...

    def euid(self) -> int:
        ...

    def memlock_limit_kb(self) -> Optional[int]:
        """Current soft RLIMIT_MEMLOCK in KiB, ``None`` when unlimited."""
        ...

    def sleep(self, seconds: float) -> None:
        ...


class LocalHost:
    """HostStateView over the real filesystem, optionally under a sysroot."""

    def __init__(self, sysroot: str = "/") -> None:
        self.sysroot = Path(sysroot)

    def _p(self, path: str) -> Path:
        return self.sysroot / path.lstrip("/")

    def _strip(self, p: Path) -> str:
        try:
            rel = p.relative_to(self.sysroot.resolve())
        except ValueError:
            return str(p)
        return "/" + str(rel) if str(rel) != "." else "/"

    def read_text(self, path: str) -> Optional[str]:
        try:
            return self._p(path).read_text(encoding="utf-8", errors="ignore")
        except (FileNotFoundError, NotADirectoryError, PermissionError):
            return None

    def write_text(self, path: str, data: str, *, append: bool = False) -> None:
        # sysfs attributes must be written in a single write() call.
        logger.debug("WRITE %s <- %r", path, data)
        with self._p(path).open("a" if append else "w", encoding="utf-8") as f:
            f.write(data)

    def exists(self, path: str) -> bool:
        return self._p(path).exists()

    def is_executable(self, path: str) -> bool:
        p = self._p(path)
        return p.is_file() and os.access(p, os.X_OK)

    def listdir(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(self._p(path)))
        except (FileNotFoundError, NotADirectoryError):
            return []

    def realpath(self, path: str) -> str:
        return self._strip(self._p(path).resolve())

    def readlink(self, path: str) -> Optional[str]:
        p = self._p(path)
        if not p.is_symlink():
            return None
        return os.readlink(p)

    def makedirs(self, path: str) -> None:
        self._p(path).mkdir(parents=True, exist_ok=True)

    def euid(self) -> int:
        return os.geteuid()

    def memlock_limit_kb(self) -> Optional[int]:
        soft, _hard = resource.getrlimit(resource.RLIMIT_MEMLOCK)
        if soft == resource.RLIM_INFINITY:
            return None
        return soft // 1024

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
