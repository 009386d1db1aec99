from __future__ import annotations

import logging
import re
from typing import Dict, Optional

from ..host import HostStateView
from .command import ExternalTool

logger = logging.getLogger(__name__)

_OS_FAMILY_MAP = {
    "debian": "debian",
    "ubuntu": "debian",
    "rhel": "rhel",
    "fedora": "rhel",
    "centos": "rhel",
    "almalinux": "rhel",
    "rocky": "rhel",
}

_CPU_VENDOR_MAP = {
    "GenuineIntel": "intel",
    "AuthenticAMD": "amd",
}

_IOMMU_FLAG_BY_VENDOR = {
    "intel": "intel_iommu=on",
    "amd": "amd_iommu=on",
}

_IOMMU_HW_RE = re.compile(r"DMAR|IOMMU|AMD-Vi")


def parse_os_release(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep or line.startswith("#"):
            continue
        out[key.strip()] = value.strip().strip('"').strip("'")
    return out


def detect_os_family(host: HostStateView) -> str:
    """Return 'debian' or 'rhel' from /etc/os-release (ID, then ID_LIKE)."""

    rel = parse_os_release(host.read_text("/etc/os-release") or "")
    candidates = [rel.get("ID", "")] + rel.get("ID_LIKE", "").split()
    for c in candidates:
        family = _OS_FAMILY_MAP.get(c.lower())
        if family:
            return family
    raise ValueError(f"Unsupported distribution: ID={rel.get('ID')!r} ID_LIKE={rel.get('ID_LIKE')!r}")


def detect_cpu_vendor(host: HostStateView) -> Optional[str]:
    text = host.read_text("/proc/cpuinfo") or ""
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "vendor_id":
            return _CPU_VENDOR_MAP.get(value.strip())
    return None


def iommu_flag_for(vendor: Optional[str]) -> str:
    return _IOMMU_FLAG_BY_VENDOR.get(vendor or "", "intel_iommu=on")


def iommu_hardware_present(host: HostStateView, *, dmesg: Optional[ExternalTool] = None) -> bool:
    """Best-effort: ACPI DMAR/IVRS tables first, kernel log second."""

    for table in ("DMAR", "IVRS"):
        if host.exists(f"/sys/firmware/acpi/tables/{table}"):
            return True
    if dmesg is None:
        return False
    r = dmesg.invoke(check=False)
    if r.returncode != 0:
        logger.info("dmesg unavailable (rc=%s); assuming no IOMMU hardware signal", r.returncode)
        return False
    return bool(_IOMMU_HW_RE.search(r.stdout))
