from __future__ import annotations

import logging
import posixpath
import re
from typing import List, Optional, Tuple

from ..errors import ExternalToolFailure
from ..host import HostStateView

logger = logging.getLogger(__name__)

SYS_PCI_DEVICES = "/sys/bus/pci/devices"
SYS_PCI_DRIVERS = "/sys/bus/pci/drivers"

# Mass storage / non-volatile memory / NVMe
NVME_CLASS = "0x010802"

BDF_RE = re.compile(r"^[0-9a-f]{4}:[0-9a-f]{2}:[0-9a-f]{2}\.[0-7]$")
_SHORT_BDF_RE = re.compile(r"^[0-9a-f]{2}:[0-9a-f]{2}\.[0-7]$")


def normalize_bdf(bdf: str) -> str:
    """Return the full ``dddd:bb:dd.f`` form, lowercase."""

    b = bdf.strip().lower()
    if _SHORT_BDF_RE.match(b):
        b = f"0000:{b}"
    if not BDF_RE.match(b):
        raise ValueError(f"Invalid PCI address: {bdf!r}")
    return b


def _device_path(bdf: str, attr: str = "") -> str:
    base = f"{SYS_PCI_DEVICES}/{bdf}"
    return f"{base}/{attr}" if attr else base


def _read_attr(host: HostStateView, bdf: str, attr: str) -> Optional[str]:
    raw = host.read_text(_device_path(bdf, attr))
    return raw.strip() if raw is not None else None


def _write(host: HostStateView, path: str, data: str) -> None:
    try:
        host.write_text(path, data)
    except OSError as e:
        raise ExternalToolFailure(f"Write to {path} failed: {e}", context={"path": path, "data": data}, cause=e) from e


def device_present(host: HostStateView, bdf: str) -> bool:
    return host.exists(_device_path(bdf))


def current_driver(host: HostStateView, bdf: str) -> Optional[str]:
    link = host.readlink(_device_path(bdf, "driver"))
    if not link:
        return None
    return posixpath.basename(link.rstrip("/"))


def device_ids(host: HostStateView, bdf: str) -> Optional[Tuple[str, str]]:
    """Return (vendor, device) as bare lowercase hex, e.g. ('15b7', '5045')."""

    vendor = _read_attr(host, bdf, "vendor")
    device = _read_attr(host, bdf, "device")
    if not vendor or not device:
        return None
    return vendor.lower().replace("0x", ""), device.lower().replace("0x", "")


def list_nvme_controllers(host: HostStateView) -> List[str]:
    out = []
    for name in host.listdir(SYS_PCI_DEVICES):
        if not BDF_RE.match(name):
            continue
        cls = _read_attr(host, name, "class") or ""
        if cls.lower().startswith(NVME_CLASS):
            out.append(name)
    return out


def driver_available(host: HostStateView, driver: str) -> bool:
    return host.exists(f"{SYS_PCI_DRIVERS}/{driver}")


def unbind(host: HostStateView, bdf: str) -> Optional[str]:
    """Detach ``bdf`` from its current driver; returns that driver's name."""

    driver = current_driver(host, bdf)
    if driver is None:
        return None
    logger.info("Unbinding %s from %s", bdf, driver)
    _write(host, f"{SYS_PCI_DRIVERS}/{driver}/unbind", bdf)
    return driver


def register_id(host: HostStateView, driver: str, vendor: str, device: str) -> bool:
    """Teach ``driver`` the vendor/device pair. False if it already knew it."""

    path = f"{SYS_PCI_DRIVERS}/{driver}/new_id"
    try:
        host.write_text(path, f"{vendor} {device}")
    except FileExistsError:
        logger.info("%s already registered for %s:%s", driver, vendor, device)
        return False
    except OSError as e:
        raise ExternalToolFailure(f"Write to {path} failed: {e}", cause=e) from e
    logger.info("Registered %s:%s with %s", vendor, device, driver)
    return True


def bind(host: HostStateView, driver: str, bdf: str) -> None:
    logger.info("Binding %s to %s", bdf, driver)
    _write(host, f"{SYS_PCI_DRIVERS}/{driver}/bind", bdf)
