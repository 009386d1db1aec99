from __future__ import annotations

import logging
from typing import Dict, Optional

from ..errors import ExternalToolFailure
from ..host import HostStateView
from .command import ExternalTool

logger = logging.getLogger(__name__)


def read_meminfo(host: HostStateView) -> Dict[str, int]:
    """Parse /proc/meminfo into {key: value} (kB for sized entries)."""

    text = host.read_text("/proc/meminfo") or ""
    info: Dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            info[key.strip()] = int(parts[0])
        except ValueError:
            continue
    return info


def nr_hugepages_path(page_size_kb: int) -> str:
    return f"/sys/kernel/mm/hugepages/hugepages-{page_size_kb}kB/nr_hugepages"


def hugepages_total(host: HostStateView, page_size_kb: int) -> int:
    raw = host.read_text(nr_hugepages_path(page_size_kb))
    if raw is not None and raw.strip().isdigit():
        return int(raw.strip())
    # Pools other than the default size are not reflected in meminfo.
    return read_meminfo(host).get("HugePages_Total", 0)


def set_nr_hugepages(host: HostStateView, count: int, page_size_kb: int) -> None:
    path = nr_hugepages_path(page_size_kb)
    logger.info("Requesting %d hugepages of %dkB", count, page_size_kb)
    try:
        host.write_text(path, f"{count}\n")
    except OSError as e:
        raise ExternalToolFailure(f"Unable to write {path}: {e}", cause=e) from e


def release_page_cache(host: HostStateView, *, sync: Optional[ExternalTool] = None) -> None:
    """Drop caches and compact memory so contiguous pages are available (best effort)."""

    if sync is not None:
        sync.invoke(check=False)
    try:
        host.write_text("/proc/sys/vm/drop_caches", "3\n")
    except OSError as e:
        logger.warning("Could not drop caches: %s", e)
    try:
        host.write_text("/proc/sys/vm/compact_memory", "1\n")
    except OSError as e:
        logger.info("Memory compaction not available: %s", e)


def is_mountpoint(host: HostStateView, mount_point: str, *, fstype: Optional[str] = None) -> bool:
    text = host.read_text("/proc/mounts") or ""
    target = mount_point.rstrip("/") or "/"
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        if fields[1] == target and (fstype is None or fields[2] == fstype):
            return True
    return False


def ensure_hugetlbfs_mount(host: HostStateView, mount_point: str, *, mount: ExternalTool) -> None:
    if is_mountpoint(host, mount_point, fstype="hugetlbfs"):
        return
    host.makedirs(mount_point)
    mount.invoke(["-t", "hugetlbfs", "nodev", mount_point])
    logger.info("Mounted hugetlbfs at %s", mount_point)
