from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from spdk_provisioner.errors import ExternalToolFailure
from spdk_provisioner.lib.command import CmdResult, ExternalTool


class FakeHost:
    """In-memory HostStateView.

    ``write_hooks`` intercept writes to a path (e.g. to emulate a kernel that
    grants fewer hugepages than requested, or a sysfs write that fails).
    """

    def __init__(
        self,
        files: Optional[Mapping[str, str]] = None,
        *,
        links: Optional[Mapping[str, str]] = None,
        realpaths: Optional[Mapping[str, str]] = None,
        dirs: Iterable[str] = (),
        executables: Iterable[str] = (),
        euid: int = 0,
        memlock_kb: Optional[int] = None,
    ) -> None:
        self.files: Dict[str, str] = dict(files or {})
        self.links: Dict[str, str] = dict(links or {})
        self.realpaths: Dict[str, str] = dict(realpaths or {})
        self.dirs: Set[str] = set(dirs)
        self.executables: Set[str] = set(executables)
        self._euid = euid
        self.memlock_kb = memlock_kb
        self.write_hooks: Dict[str, Callable[[str], None]] = {}
        self.writes: List[Tuple[str, str]] = []
        self.slept: List[float] = []

    def _all_paths(self) -> Set[str]:
        return set(self.files) | set(self.links) | self.dirs | self.executables

    def read_text(self, path: str) -> Optional[str]:
        return self.files.get(path)

    def write_text(self, path: str, data: str, *, append: bool = False) -> None:
        self.writes.append((path, data))
        hook = self.write_hooks.get(path)
        if hook is not None:
            hook(data)
            return
        self.files[path] = (self.files.get(path, "") + data) if append else data

    def exists(self, path: str) -> bool:
        prefix = path.rstrip("/") + "/"
        return any(p == path or p.startswith(prefix) for p in self._all_paths())

    def is_executable(self, path: str) -> bool:
        return path in self.executables

    def listdir(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        names = {p[len(prefix):].split("/", 1)[0] for p in self._all_paths() if p.startswith(prefix)}
        return sorted(n for n in names if n)

    def realpath(self, path: str) -> str:
        return self.realpaths.get(path, path)

    def readlink(self, path: str) -> Optional[str]:
        return self.links.get(path)

    def makedirs(self, path: str) -> None:
        self.dirs.add(path)

    def euid(self) -> int:
        return self._euid

    def memlock_limit_kb(self) -> Optional[int]:
        return self.memlock_kb

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)

    def written(self, path: str) -> List[str]:
        return [data for p, data in self.writes if p == path]


ToolReply = Union[int, Tuple[int, str], CmdResult]


class FakeTool(ExternalTool):
    """ExternalTool that records calls and replies from a script."""

    def __init__(
        self,
        name: str = "fake",
        *,
        replies: Sequence[ToolReply] = (),
        handler: Optional[Callable[[List[str], Dict[str, str]], ToolReply]] = None,
        default: ToolReply = 0,
    ) -> None:
        super().__init__(name=name, argv=[name])
        self.replies = list(replies)
        self.handler = handler
        self.default = default
        self.calls: List[List[str]] = []
        self.envs: List[Dict[str, str]] = []

    def invoke(
        self,
        args: Sequence[str] = (),
        *,
        timeout: Optional[float] = None,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
    ) -> CmdResult:
        args = list(args)
        env_d = dict(env or {})
        self.calls.append(args)
        self.envs.append(env_d)

        if self.handler is not None:
            reply = self.handler(args, env_d)
        elif self.replies:
            reply = self.replies.pop(0)
        else:
            reply = self.default

        if isinstance(reply, CmdResult):
            result = reply
        elif isinstance(reply, tuple):
            result = CmdResult(argv=[*self.argv, *args], returncode=reply[0], stdout=reply[1], stderr="")
        else:
            result = CmdResult(argv=[*self.argv, *args], returncode=reply, stdout="", stderr="")

        if check and result.returncode not in self.expected_codes:
            raise ExternalToolFailure(f"{self.name} exited with {result.returncode}")
        return result
