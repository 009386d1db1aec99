from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from .command import DEFAULT_TIMEOUT_S, ExternalTool

logger = logging.getLogger(__name__)


DEBIAN_PACKAGES = [
    "gcc",
    "make",
    "git",
    "libnuma-dev",
    "libaio-dev",
    "libssl-dev",
    "libibverbs-dev",
    "librdmacm-dev",
    "meson",
    "ninja-build",
    "libfuse3-dev",
    "libcunit1-dev",
    "uuid-dev",
    "libncurses-dev",
    "python3",
    "python3-pip",
    "python3-venv",
]

RHEL_PACKAGES = [
    "gcc",
    "gcc-c++",
    "make",
    "git",
    "numactl-devel",
    "libaio-devel",
    "openssl-devel",
    "rdma-core-devel",
    "meson",
    "ninja-build",
    "fuse3-devel",
    "CUnit-devel",
    "libuuid-devel",
    "ncurses-devel",
    "python3",
    "python3-pip",
    "python3-virtualenv",
    "kernel-devel",
    "kernel-headers",
]


class PackageManager(ExternalTool, ABC):
    """Install/query packages through the distribution's tooling.

    Subclasses supply the distribution commands; ``missing`` is shared.
    """

    @abstractmethod
    def refresh(self) -> None:
        ...

    @abstractmethod
    def install(self, packages: Sequence[str]) -> None:
        ...

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        ...

    def missing(self, packages: Sequence[str]) -> List[str]:
        return [p for p in packages if not self.is_installed(p)]


class AptPackageManager(PackageManager):
    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT_S) -> None:
        super().__init__(
            name="apt-get",
            argv=["apt-get"],
            env={"DEBIAN_FRONTEND": "noninteractive"},
            timeout=timeout,
        )
        self._dpkg_query = ExternalTool(name="dpkg-query", argv=["dpkg-query"], timeout=60)

    def refresh(self) -> None:
        self.invoke(["update", "-y"])

    def install(self, packages: Sequence[str]) -> None:
        if not packages:
            return
        self.invoke(["install", "-y", *packages])

    def is_installed(self, package: str) -> bool:
        # dpkg -l | grep would match substrings; query the exact status instead.
        r = self._dpkg_query.invoke(["-W", "-f=${Status}", package], check=False)
        return r.returncode == 0 and "install ok installed" in r.stdout


class DnfPackageManager(PackageManager):
    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT_S) -> None:
        super().__init__(name="dnf", argv=["dnf"], timeout=timeout)
        self._rpm = ExternalTool(name="rpm", argv=["rpm"], timeout=60)

    def refresh(self) -> None:
        self.invoke(["makecache", "-y"])

    def install(self, packages: Sequence[str]) -> None:
        if not packages:
            return
        self.invoke(["install", "-y", *packages])

    def is_installed(self, package: str) -> bool:
        return self._rpm.invoke(["-q", package], check=False).returncode == 0

    def enabled_repos(self) -> str:
        return self.invoke(["repolist", "--enabled"], check=False).stdout

    def enable_repo(self, repo_id: str) -> bool:
        return self.invoke(["config-manager", "--set-enabled", repo_id], check=False).returncode == 0


def package_manager_for(os_family: str, *, timeout: float = DEFAULT_TIMEOUT_S) -> PackageManager:
    if os_family == "debian":
        return AptPackageManager(timeout=timeout)
    if os_family == "rhel":
        return DnfPackageManager(timeout=timeout)
    raise ValueError(f"Unsupported os_family={os_family!r} (expected 'debian' or 'rhel')")


def default_packages(os_family: str) -> List[str]:
    if os_family == "debian":
        return list(DEBIAN_PACKAGES)
    if os_family == "rhel":
        return list(RHEL_PACKAGES)
    raise ValueError(f"Unsupported os_family={os_family!r} (expected 'debian' or 'rhel')")
