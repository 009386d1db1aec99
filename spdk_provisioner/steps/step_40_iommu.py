from __future__ import annotations

import logging
from typing import Optional

from ..errors import ConfigurationPending
from ..host import HostStateView
from ..lib.bootloader import add_grub_flag, grub_cmdline_key, iommu_active
from ..lib.command import ExternalTool
from ..lib.hwdetect import detect_cpu_vendor, iommu_flag_for, iommu_hardware_present
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


class EnableIommuStep(BaseStep):
    step_id = "40_iommu"
    name = "Enable IOMMU"
    policy = Policy.REQUIRES_REBOOT
    reboot_reason = "IOMMU enabled in GRUB; reboot and re-run"

    def __init__(
        self,
        *,
        os_family: str,
        regenerate: ExternalTool,
        flag: str = "auto",
        dmesg: Optional[ExternalTool] = None,
    ) -> None:
        self.os_family = os_family
        self.regenerate = regenerate
        self.flag = flag
        self.dmesg = dmesg or ExternalTool(name="dmesg", argv=["dmesg"], timeout=30)

    def _flag(self, host: HostStateView) -> str:
        if self.flag != "auto":
            return self.flag
        return iommu_flag_for(detect_cpu_vendor(host))

    def check(self, host: HostStateView) -> StepState:
        return StepState.SATISFIED if iommu_active(host) else StepState.UNSATISFIED

    def guard(self, host: HostStateView) -> Optional[str]:
        if not iommu_hardware_present(host, dmesg=self.dmesg):
            return "IOMMU hardware not detected; SPDK will run without it at reduced safety/performance"
        return None

    def remediate(self, host: HostStateView) -> Optional[str]:
        flag = self._flag(host)
        key = grub_cmdline_key(self.os_family)
        added = add_grub_flag(host, flag, key=key)
        # grub.cfg may lag the defaults file after an interrupted run.
        self.regenerate.invoke()
        if not added:
            raise ConfigurationPending(f"{flag} already set in {key}; reboot and re-run")
        return None
