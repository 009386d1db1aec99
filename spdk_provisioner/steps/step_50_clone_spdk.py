from __future__ import annotations

import logging
from typing import Optional

from ..errors import ExternalToolFailure
from ..host import HostStateView
from ..lib.command import ExternalTool
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


class CloneSpdkStep(BaseStep):
    step_id = "50_clone_spdk"
    name = "Clone SPDK sources"
    policy = Policy.FATAL_ON_FAILURE

    def __init__(
        self,
        *,
        spdk_dir: str,
        parent_dir: str,
        repo_url: str,
        owner: Optional[str] = None,
        git: Optional[ExternalTool] = None,
        chown: Optional[ExternalTool] = None,
        timeout: float = 1800,
    ) -> None:
        self.spdk_dir = spdk_dir
        self.parent_dir = parent_dir
        self.repo_url = repo_url
        self.owner = owner
        self.git = git or ExternalTool(name="git", argv=["git"], timeout=timeout)
        self.chown = chown or ExternalTool(name="chown", argv=["chown"], timeout=300)

    def _cloned(self, host: HostStateView) -> bool:
        return host.exists(f"{self.spdk_dir}/.git")

    def check(self, host: HostStateView) -> StepState:
        # dpdk is a submodule; its .git appears once submodules are initialized.
        if self._cloned(host) and host.exists(f"{self.spdk_dir}/dpdk/.git"):
            return StepState.SATISFIED
        return StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        if not self._cloned(host):
            if host.exists(self.spdk_dir) and host.listdir(self.spdk_dir):
                raise ExternalToolFailure(
                    f"{self.spdk_dir} exists but is not a git checkout; move it aside and re-run"
                )
            host.makedirs(self.parent_dir)
            logger.info("Cloning %s into %s", self.repo_url, self.spdk_dir)
            self.git.invoke(["clone", self.repo_url, self.spdk_dir])

        self.git.invoke(["-C", self.spdk_dir, "submodule", "update", "--init"])

        if self.owner:
            self.chown.invoke(["-R", f"{self.owner}:{self.owner}", self.spdk_dir])
        return None
