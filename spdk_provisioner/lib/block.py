from __future__ import annotations

import logging
import posixpath
import re
from typing import Iterable, List, Optional, Set

from ..host import HostStateView
from .pci import BDF_RE, list_nvme_controllers

logger = logging.getLogger(__name__)

BOOT_MOUNT_POINTS = ("/", "/boot", "/boot/efi")

_NVME_CTRL_RE = re.compile(r"^nvme\d+$")


def mounted_block_devices(host: HostStateView, mount_points: Iterable[str] = BOOT_MOUNT_POINTS) -> List[str]:
    """Return /dev sources mounted at any of ``mount_points``."""

    wanted = set(mount_points)
    out: List[str] = []
    for line in (host.read_text("/proc/mounts") or "").splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        src, target = fields[0], fields[1]
        if target in wanted and src.startswith("/dev/") and src not in out:
            out.append(src)
    return out


def block_name(host: HostStateView, dev: str) -> str:
    # /dev/mapper/root -> /dev/dm-0
    return posixpath.basename(host.realpath(dev))


def backing_devices(host: HostStateView, name: str, _seen: Optional[Set[str]] = None) -> Set[str]:
    """Follow device-mapper/md slaves down to the physical block devices."""

    seen = _seen if _seen is not None else set()
    if name in seen:
        return set()
    seen.add(name)
    slaves = host.listdir(f"/sys/class/block/{name}/slaves")
    if not slaves:
        return {name}
    out: Set[str] = set()
    for s in slaves:
        out |= backing_devices(host, s, seen)
    return out


def _last_bdf(path: str) -> Optional[str]:
    matches = [seg for seg in path.split("/") if BDF_RE.match(seg)]
    return matches[-1] if matches else None


def _subsystem_controllers(host: HostStateView, path: str) -> Set[str]:
    """PCI addresses of the controllers behind a native-multipath namespace.

    With nvme_core.multipath=Y the namespace hangs off a virtual
    ``nvme-subsystem`` device instead of its controller.
    """

    segs = path.split("/")
    if "nvme-subsystem" not in segs:
        return set()
    idx = segs.index("nvme-subsystem")
    if idx + 1 >= len(segs):
        return set()
    subsys = segs[idx + 1]

    out: Set[str] = set()
    for ctrl in host.listdir(f"/sys/class/nvme-subsystem/{subsys}"):
        if not _NVME_CTRL_RE.match(ctrl):
            continue
        bdf = _last_bdf(host.realpath(f"/sys/class/nvme/{ctrl}"))
        if bdf:
            out.add(bdf)
    return out


def pci_addresses_of(host: HostStateView, name: str) -> Set[str]:
    """PCI addresses hosting block device ``name`` (empty if none found)."""

    path = host.realpath(f"/sys/class/block/{name}")
    bdf = _last_bdf(path)
    if bdf:
        return {bdf}
    return _subsystem_controllers(host, path)


def protected_bdfs(host: HostStateView, extra: Iterable[str] = ()) -> Set[str]:
    """PCI addresses hosting the active root/boot storage.

    An NVMe boot device whose controller cannot be resolved protects every
    NVMe controller on the host.
    """

    out = set(extra)
    for dev in mounted_block_devices(host):
        for name in backing_devices(host, block_name(host, dev)):
            bdfs = pci_addresses_of(host, name)
            if bdfs:
                logger.debug("Boot device %s (%s) sits on %s", dev, name, ", ".join(sorted(bdfs)))
                out |= bdfs
            elif name.startswith("nvme"):
                every = list_nvme_controllers(host)
                logger.warning(
                    "Boot device %s (%s) has no resolvable PCI address; protecting all NVMe controllers: %s",
                    dev,
                    name,
                    ", ".join(every) or "none",
                )
                out.update(every)
            else:
                logger.debug("Boot device %s (%s) has no PCI address", dev, name)
    return out
