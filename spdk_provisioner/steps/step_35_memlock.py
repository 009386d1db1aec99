from __future__ import annotations

import logging
import posixpath
from typing import List, Optional

from ..errors import ConfigurationPending, ExternalToolFailure
from ..host import HostStateView
from ..lib.env import PATHS
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


def render_limits(users: List[str]) -> str:
    lines = ["# Managed by spdk-provisioner: SPDK pins DMA memory."]
    for user in users:
        lines.append(f"{user} hard memlock unlimited")
        lines.append(f"{user} soft memlock unlimited")
    return "\n".join(lines) + "\n"


class MemlockLimitStep(BaseStep):
    step_id = "35_memlock"
    name = "Raise memlock limit"
    policy = Policy.REQUIRES_REBOOT
    reboot_reason = "memlock limit updated; reboot (or log in again) and re-run"

    def __init__(self, *, min_kb: int, owner: Optional[str] = None, path: str = PATHS.limits_dropin) -> None:
        self.min_kb = min_kb
        self.path = path
        self.users = ["root"] + ([owner] if owner and owner != "root" else [])

    def check(self, host: HostStateView) -> StepState:
        limit = host.memlock_limit_kb()
        if limit is None or limit >= self.min_kb:
            return StepState.SATISFIED
        return StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        wanted = render_limits(self.users)
        if host.read_text(self.path) == wanted:
            raise ConfigurationPending(
                f"{self.path} already grants unlimited memlock; reboot (or log in again) and re-run"
            )
        try:
            host.makedirs(posixpath.dirname(self.path))
            host.write_text(self.path, wanted)
        except OSError as e:
            raise ExternalToolFailure(f"Unable to write {self.path}: {e}", cause=e) from e
        logger.info("Wrote %s", self.path)
        return None
