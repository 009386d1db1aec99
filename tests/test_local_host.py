from __future__ import annotations

import os
from pathlib import Path

from spdk_provisioner.host import LocalHost


def test_paths_resolve_under_sysroot(tmp_path: Path) -> None:
    host = LocalHost(str(tmp_path))
    (tmp_path / "proc").mkdir()
    (tmp_path / "proc" / "meminfo").write_text("MemTotal: 1024 kB\n", encoding="utf-8")

    assert host.read_text("/proc/meminfo") == "MemTotal: 1024 kB\n"
    assert host.read_text("/proc/cmdline") is None
    assert host.exists("/proc/meminfo")
    assert host.listdir("/proc") == ["meminfo"]
    assert host.listdir("/sys/class/iommu") == []


def test_write_and_append(tmp_path: Path) -> None:
    host = LocalHost(str(tmp_path))
    host.makedirs("/etc/security/limits.d")

    host.write_text("/etc/security/limits.d/x.conf", "a\n")
    host.write_text("/etc/security/limits.d/x.conf", "b\n", append=True)

    assert (tmp_path / "etc/security/limits.d/x.conf").read_text(encoding="utf-8") == "a\nb\n"


def test_links_stay_inside_sysroot(tmp_path: Path) -> None:
    host = LocalHost(str(tmp_path))
    dev = tmp_path / "sys/devices/pci0000:00/0000:3d:00.0"
    dev.mkdir(parents=True)
    (tmp_path / "sys/bus/pci/drivers/nvme").mkdir(parents=True)
    os.symlink("../../../bus/pci/drivers/nvme", dev / "driver")
    (tmp_path / "sys/class/block").mkdir(parents=True)
    os.symlink("../../devices/pci0000:00/0000:3d:00.0", tmp_path / "sys/class/block/nvme0n1")

    assert host.readlink("/sys/devices/pci0000:00/0000:3d:00.0/driver") == "../../../bus/pci/drivers/nvme"
    assert host.readlink("/sys/devices/pci0000:00/0000:3d:00.0") is None
    assert host.realpath("/sys/class/block/nvme0n1") == "/sys/devices/pci0000:00/0000:3d:00.0"


def test_is_executable(tmp_path: Path) -> None:
    host = LocalHost(str(tmp_path))
    binary = tmp_path / "hello_world"
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    assert not host.is_executable("/hello_world")
    binary.chmod(0o755)
    assert host.is_executable("/hello_world")
    assert not host.is_executable("/")


def test_memlock_limit_is_kib_or_unlimited(tmp_path: Path) -> None:
    limit = LocalHost(str(tmp_path)).memlock_limit_kb()
    assert limit is None or limit >= 0
