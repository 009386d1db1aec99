from __future__ import annotations

import logging
import re

from ..errors import ExternalToolFailure
from ..host import HostStateView
from .command import DEFAULT_TIMEOUT_S, ExternalTool

logger = logging.getLogger(__name__)

GRUB_DEFAULTS = "/etc/default/grub"

IOMMU_CMDLINE_FLAGS = ("intel_iommu=on", "amd_iommu=on", "iommu=on")


def kernel_cmdline(host: HostStateView) -> str:
    return (host.read_text("/proc/cmdline") or "").strip()


def iommu_active(host: HostStateView) -> bool:
    """True when the running kernel has an IOMMU enabled."""

    args = kernel_cmdline(host).split()
    if any(flag in args for flag in IOMMU_CMDLINE_FLAGS):
        return True
    # Firmware/default-on IOMMUs register under /sys/class/iommu without a flag.
    return bool(host.listdir("/sys/class/iommu"))


def grub_cmdline_key(os_family: str) -> str:
    return "GRUB_CMDLINE_LINUX_DEFAULT" if os_family == "debian" else "GRUB_CMDLINE_LINUX"


def grub_has_flag(host: HostStateView, flag: str, *, key: str) -> bool:
    text = host.read_text(GRUB_DEFAULTS) or ""
    m = re.search(rf'^{key}="([^"]*)"', text, flags=re.MULTILINE)
    return bool(m) and flag in m.group(1).split()


def add_grub_flag(host: HostStateView, flag: str, *, key: str) -> bool:
    """Insert ``flag`` at the front of ``key`` in /etc/default/grub.

    Returns False when the flag was already there.
    """

    if grub_has_flag(host, flag, key=key):
        return False

    text = host.read_text(GRUB_DEFAULTS)
    if text is None:
        raise ExternalToolFailure(f"{GRUB_DEFAULTS} not found; cannot set {flag}")

    pattern = re.compile(rf'^{key}="', flags=re.MULTILINE)
    if pattern.search(text):
        new_text = pattern.sub(f'{key}="{flag} ', text, count=1)
        new_text = new_text.replace(f'{key}="{flag} "', f'{key}="{flag}"')
    else:
        sep = "" if text.endswith("\n") or not text else "\n"
        new_text = f'{text}{sep}{key}="{flag}"\n'

    try:
        host.write_text(GRUB_DEFAULTS, new_text)
    except OSError as e:
        raise ExternalToolFailure(f"Unable to write {GRUB_DEFAULTS}: {e}", cause=e) from e
    logger.info("Added %s to %s in %s", flag, key, GRUB_DEFAULTS)
    return True


def grub_regenerate_tool(os_family: str, *, timeout: float = DEFAULT_TIMEOUT_S) -> ExternalTool:
    if os_family == "debian":
        return ExternalTool(name="update-grub", argv=["update-grub"], timeout=timeout)
    return ExternalTool(
        name="grub2-mkconfig",
        argv=["grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"],
        timeout=timeout,
    )
