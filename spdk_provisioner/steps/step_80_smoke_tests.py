from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ..host import HostStateView
from ..lib.command import ExternalTool
from ..lib.hugepages import hugepages_total
from ..lib.pci import current_driver
from ..pipeline import BaseStep
from ..report import Policy, StepState
from .step_70_bind_nvme import NvmeSelector

logger = logging.getLogger(__name__)


class SmokeTestStep(BaseStep):
    """Run SPDK's identify and hello_world samples against the bound device."""

    step_id = "80_smoke_tests"
    name = "Smoke-test SPDK"
    policy = Policy.WARN_AND_CONTINUE

    def __init__(
        self,
        *,
        spdk_dir: str,
        binaries: Sequence[str],
        selector: NvmeSelector,
        target_driver: str,
        page_size_kb: int,
        timeout: float = 300,
        programs: Optional[Sequence[ExternalTool]] = None,
        setup_script: Optional[ExternalTool] = None,
    ) -> None:
        self.spdk_dir = spdk_dir
        self.selector = selector
        self.target_driver = target_driver
        self.page_size_kb = page_size_kb
        self.programs: List[ExternalTool] = list(programs) if programs is not None else [
            ExternalTool(name=b.rsplit("/", 1)[-1], argv=[b], cwd=spdk_dir, timeout=timeout) for b in binaries
        ]
        self.setup_script = setup_script or ExternalTool(
            name="setup.sh", argv=["scripts/setup.sh"], cwd=spdk_dir, timeout=timeout
        )

    def _bound_device(self, host: HostStateView) -> Optional[str]:
        bdf = self.selector.select(host)
        if bdf is not None and current_driver(host, bdf) == self.target_driver:
            return bdf
        return None

    def _programs_pass(self) -> bool:
        for prog in self.programs:
            r = prog.invoke(check=False)
            if r.returncode != 0:
                logger.info("%s exited with %d", prog.name, r.returncode)
                return False
        return True

    def check(self, host: HostStateView) -> StepState:
        if self._bound_device(host) is None:
            return StepState.UNSATISFIED
        return StepState.SATISFIED if self._programs_pass() else StepState.UNSATISFIED

    def guard(self, host: HostStateView) -> Optional[str]:
        if self._bound_device(host) is None:
            return (
                f"no NVMe device bound to {self.target_driver}; SPDK is built but smoke tests were skipped "
                f"(bind a device with {self.spdk_dir}/scripts/setup.sh and re-run)"
            )
        return None

    def remediate(self, host: HostStateView) -> Optional[str]:
        bdf = self._bound_device(host)
        env = {
            "NRHUGE": str(hugepages_total(host, self.page_size_kb)),
            "HUGEPGSZ": str(self.page_size_kb),
            "DRIVER_OVERRIDE": self.target_driver,
        }
        if bdf:
            env["PCI_ALLOWED"] = bdf
        self.setup_script.invoke(env=env)
        status = self.setup_script.invoke(["status"], check=False)
        logger.info("setup.sh status:\n%s", status.stdout.strip())
        return None
