from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..errors import DependencyMissing, ExternalToolFailure
from ..host import HostStateView
from ..lib.pkg import PackageManager
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


class InstallPackagesStep(BaseStep):
    step_id = "20_install_packages"
    name = "Install build dependencies"
    policy = Policy.FATAL_ON_FAILURE

    def __init__(self, manager: PackageManager, packages: Sequence[str]) -> None:
        self.manager = manager
        self.packages = list(packages)

    def check(self, host: HostStateView) -> StepState:
        if self.manager.missing(self.packages):
            return StepState.UNSATISFIED
        return StepState.SATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        missing = self.manager.missing(self.packages)
        logger.info("Installing %d package(s): %s", len(missing), " ".join(missing))
        self.manager.refresh()
        install_error: Optional[ExternalToolFailure] = None
        try:
            self.manager.install(missing)
        except ExternalToolFailure as e:
            # Partial installs happen; what matters is what is still missing.
            logger.warning("%s", e)
            install_error = e

        still_missing = self.manager.missing(missing)
        if still_missing:
            raise DependencyMissing(
                f"Packages not installed after install attempt: {', '.join(still_missing)}",
                context={"missing": still_missing},
                cause=install_error,
            )
        return None
