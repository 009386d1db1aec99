from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from ..errors import DependencyMissing
from ..host import HostStateView
from ..lib.pkg import DnfPackageManager
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)

# CRB on EL9, PowerTools on EL8; either provides the -devel packages.
DEV_REPO_IDS = ("crb", "powertools")


class EnableReposStep(BaseStep):
    step_id = "10_enable_repos"
    name = "Enable EPEL and CRB/PowerTools repositories"
    policy = Policy.WARN_AND_CONTINUE

    def __init__(self, dnf: DnfPackageManager, *, repo_ids: Sequence[str] = DEV_REPO_IDS) -> None:
        self.dnf = dnf
        self.repo_ids = tuple(repo_ids)

    def _dev_repo_enabled(self) -> bool:
        listing = self.dnf.enabled_repos()
        ids = {m.group(1).lower() for m in re.finditer(r"^(\S+)", listing, flags=re.MULTILINE)}
        return any(r in ids for r in self.repo_ids)

    def check(self, host: HostStateView) -> StepState:
        if self.dnf.is_installed("epel-release") and self._dev_repo_enabled():
            return StepState.SATISFIED
        return StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        if not self.dnf.is_installed("epel-release"):
            self.dnf.install(["epel-release"])

        if not self._dev_repo_enabled():
            for repo_id in self.repo_ids:
                if self.dnf.enable_repo(repo_id):
                    logger.info("Enabled repository %s", repo_id)
                    break
            else:
                raise DependencyMissing(
                    f"Could not enable any of {', '.join(self.repo_ids)}; some -devel packages may be unavailable"
                )
        return None
