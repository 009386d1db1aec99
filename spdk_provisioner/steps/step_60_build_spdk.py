from __future__ import annotations

import logging
import os
from typing import Optional, Sequence

from ..host import HostStateView
from ..lib.command import ExternalTool
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


def venv_env(venv_dir: str) -> dict[str, str]:
    return {
        "VIRTUAL_ENV": venv_dir,
        "PATH": f"{venv_dir}/bin:{os.environ.get('PATH', '/usr/sbin:/usr/bin:/sbin:/bin')}",
    }


class BuildSpdkStep(BaseStep):
    step_id = "60_build_spdk"
    name = "Build SPDK and DPDK"
    policy = Policy.FATAL_ON_FAILURE

    def __init__(
        self,
        *,
        spdk_dir: str,
        venv_dir: str,
        binaries: Sequence[str],
        configure_flags: Sequence[str] = ("--without-nvme-cuse",),
        jobs: int = 1,
        timeout: float = 7200,
        configure: Optional[ExternalTool] = None,
        make: Optional[ExternalTool] = None,
    ) -> None:
        self.spdk_dir = spdk_dir
        self.binaries = list(binaries)
        self.configure_flags = list(configure_flags)
        self.jobs = max(int(jobs), 1)
        env = venv_env(venv_dir)
        self.configure = configure or ExternalTool(
            name="configure", argv=["./configure"], cwd=spdk_dir, env=env, timeout=timeout
        )
        self.make = make or ExternalTool(name="make", argv=["make"], cwd=spdk_dir, env=env, timeout=timeout)

    def check(self, host: HostStateView) -> StepState:
        if all(host.is_executable(b) for b in self.binaries):
            return StepState.SATISFIED
        return StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        previously_configured = host.exists(f"{self.spdk_dir}/mk/config.mk")

        self.configure.invoke(self.configure_flags)
        if previously_configured:
            logger.info("Cleaning previous build")
            self.make.invoke(["clean"])

        logger.info("Building SPDK and DPDK with %d job(s); this may take several minutes", self.jobs)
        self.make.invoke([f"-j{self.jobs}"])
        self.make.invoke(["-C", "examples/nvme/hello_world"])
        return None
