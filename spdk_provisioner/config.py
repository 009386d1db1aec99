from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .lib.pci import normalize_bdf
from .sizing import ReductionPolicy


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section {name!r} must be a mapping")
    return value


@dataclass(frozen=True)
class SetupConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    # --- host ---

    @property
    def os_family(self) -> str:
        fam = str(self.raw.get("os_family") or "auto").strip().lower()
        if fam not in {"auto", "debian", "rhel"}:
            raise ValueError(f"os_family must be auto|debian|rhel, got {fam!r}")
        return fam

    def packages(self, os_family: str) -> Optional[List[str]]:
        pk = _section(self.raw, "packages").get(os_family)
        return [str(p) for p in pk] if pk else None

    # --- spdk ---

    @property
    def spdk_parent_dir(self) -> str:
        return str(_section(self.raw, "spdk").get("parent_dir") or "/opt")

    @property
    def spdk_dir(self) -> str:
        return str(_section(self.raw, "spdk").get("dir") or f"{self.spdk_parent_dir.rstrip('/')}/spdk")

    @property
    def spdk_repo_url(self) -> str:
        return str(_section(self.raw, "spdk").get("repo_url") or "https://github.com/spdk/spdk.git")

    @property
    def owner(self) -> Optional[str]:
        v = _section(self.raw, "spdk").get("owner")
        return str(v) if v else None

    @property
    def configure_flags(self) -> List[str]:
        flags = _section(self.raw, "spdk").get("configure_flags")
        if flags is None:
            return ["--without-nvme-cuse"]
        return [str(f) for f in flags]

    @property
    def jobs(self) -> int:
        return int(_section(self.raw, "spdk").get("jobs") or os.cpu_count() or 1)

    @property
    def venv_dir(self) -> str:
        return f"{self.spdk_dir}/venv"

    @property
    def identify_bin(self) -> str:
        return f"{self.spdk_dir}/build/bin/spdk_nvme_identify"

    @property
    def hello_world_bin(self) -> str:
        return f"{self.spdk_dir}/build/examples/hello_world"

    # --- hugepages ---

    @property
    def hugepages_desired(self) -> int:
        return int(_section(self.raw, "hugepages").get("desired", 2048))

    @property
    def hugepage_size_kb(self) -> int:
        return int(_section(self.raw, "hugepages").get("page_size_kb", 2048))

    @property
    def hugepages_reserved_kb(self) -> int:
        # Leave 512MB for the system.
        return int(_section(self.raw, "hugepages").get("reserved_kb", 524288))

    @property
    def hugepages_settle_s(self) -> float:
        return float(_section(self.raw, "hugepages").get("settle_s", 2.0))

    @property
    def hugepages_mount_point(self) -> str:
        return str(_section(self.raw, "hugepages").get("mount_point") or "/mnt/huge")

    @property
    def reduction_policy(self) -> ReductionPolicy:
        hp = _section(self.raw, "hugepages")
        return ReductionPolicy(
            factor=float(hp.get("factor", 0.5)),
            floor=int(hp.get("floor", 128)),
            minimum=int(hp.get("minimum", 64)),
            max_attempts=int(hp.get("max_attempts", 5)),
        )

    # --- memlock / iommu ---

    @property
    def memlock_min_kb(self) -> int:
        return int(_section(self.raw, "memlock").get("min_kb", 8210688))

    @property
    def iommu_flag(self) -> str:
        return str(_section(self.raw, "iommu").get("flag") or "auto")

    # --- nvme ---

    @property
    def nvme_bdf(self) -> str:
        return str(_section(self.raw, "nvme").get("bdf") or "auto")

    @property
    def nvme_vendor_device(self) -> Optional[Tuple[str, str]]:
        """Expected ``vendor:device`` (e.g. 15b7:5045), if configured."""

        v = _section(self.raw, "nvme").get("vendor_device")
        if not v:
            return None
        parts = str(v).replace(":", " ").split()
        if len(parts) != 2:
            raise ValueError(f"nvme.vendor_device must look like '15b7:5045', got {v!r}")
        return parts[0].lower(), parts[1].lower()

    @property
    def target_driver(self) -> str:
        return str(_section(self.raw, "nvme").get("target_driver") or "vfio-pci")

    @property
    def force_bind(self) -> bool:
        return bool(_section(self.raw, "nvme").get("force_bind", False))

    @property
    def protected_bdfs(self) -> List[str]:
        return [str(b) for b in (_section(self.raw, "nvme").get("protected_bdfs") or [])]

    # --- timeouts ---

    def timeout(self, name: str) -> float:
        defaults = {"default": 600, "package": 1800, "clone": 1800, "build": 7200, "smoke": 300}
        t = _section(self.raw, "timeouts")
        return float(t.get(name, defaults.get(name, t.get("default", defaults["default"]))))


def load_setup_config(path: str) -> SetupConfig:
    p = Path(path)
    if not p.exists():
        return SetupConfig(raw={})

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("provisioner config must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read the provisioner config") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")

    cfg = SetupConfig(raw=raw)
    # Fail early on malformed values rather than mid-run.
    _ = (cfg.os_family, cfg.reduction_policy, cfg.nvme_vendor_device)
    if cfg.nvme_bdf != "auto":
        normalize_bdf(cfg.nvme_bdf)
    for bdf in cfg.protected_bdfs:
        normalize_bdf(bdf)
    return cfg
