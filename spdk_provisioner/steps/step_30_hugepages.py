from __future__ import annotations

import logging
from typing import Optional

from ..errors import ResourceInsufficient
from ..host import HostStateView
from ..lib.command import ExternalTool
from ..lib.hugepages import (
    ensure_hugetlbfs_mount,
    hugepages_total,
    is_mountpoint,
    read_meminfo,
    release_page_cache,
    set_nr_hugepages,
)
from ..pipeline import BaseStep
from ..report import Policy, StepState
from ..sizing import AllocationGrade, ReductionPolicy, allocate_with_reduction, compute_target

logger = logging.getLogger(__name__)


class ConfigureHugepagesStep(BaseStep):
    step_id = "30_hugepages"
    name = "Configure hugepages"
    policy = Policy.FATAL_ON_FAILURE

    def __init__(
        self,
        *,
        desired: int,
        page_size_kb: int,
        reserved_kb: int,
        reduction: ReductionPolicy,
        mount_point: str,
        settle_s: float = 2.0,
        mount: Optional[ExternalTool] = None,
        sync: Optional[ExternalTool] = None,
    ) -> None:
        self.desired = desired
        self.page_size_kb = page_size_kb
        self.reserved_kb = reserved_kb
        self.reduction = reduction
        self.mount_point = mount_point
        self.settle_s = settle_s
        self.mount = mount or ExternalTool(name="mount", argv=["mount"], timeout=60)
        self.sync = sync or ExternalTool(name="sync", argv=["sync"], timeout=300)

    def target(self, host: HostStateView) -> int:
        mem_total_kb = read_meminfo(host).get("MemTotal", 0)
        return compute_target(
            mem_total_kb=mem_total_kb,
            reserved_kb=self.reserved_kb,
            page_size_kb=self.page_size_kb,
            desired=self.desired,
            floor=self.reduction.floor,
            minimum=self.reduction.minimum,
        )

    def _mounted(self, host: HostStateView) -> bool:
        return is_mountpoint(host, self.mount_point, fstype="hugetlbfs")

    def check(self, host: HostStateView) -> StepState:
        try:
            target = self.target(host)
        except ResourceInsufficient:
            return StepState.UNSATISFIED
        if not self._mounted(host):
            return StepState.UNSATISFIED
        # A pool at or above the minimum counts as configured, degraded or not.
        total = hugepages_total(host, self.page_size_kb)
        if total >= target or total >= self.reduction.minimum:
            return StepState.SATISFIED
        return StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        target = self.target(host)
        total = hugepages_total(host, self.page_size_kb)
        logger.info("Hugepages: total=%d target=%d (%dkB pages)", total, target, self.page_size_kb)

        note = None
        if total < target:
            release_page_cache(host, sync=self.sync)
            host.sleep(self.settle_s)

            def observe() -> int:
                host.sleep(self.settle_s)
                return hugepages_total(host, self.page_size_kb)

            result = allocate_with_reduction(
                target,
                apply=lambda n: set_nr_hugepages(host, n, self.page_size_kb),
                observe=observe,
                policy=self.reduction,
            )
            logger.info("Hugepage requests %s -> %d allocated", result.requested, result.actual)

            if result.grade is AllocationGrade.FAILED:
                raise ResourceInsufficient(
                    f"Only {result.actual} hugepages allocated (minimum {self.reduction.minimum})",
                    context={"requested": result.requested, "actual": result.actual, "target": target},
                )
            if result.grade is AllocationGrade.DEGRADED:
                note = f"{result.actual} of {target} hugepages allocated; memory may be fragmented"

        ensure_hugetlbfs_mount(host, self.mount_point, mount=self.mount)
        return note

    def verify(self, host: HostStateView) -> StepState:
        if hugepages_total(host, self.page_size_kb) >= self.reduction.minimum and self._mounted(host):
            return StepState.SATISFIED
        return StepState.UNSATISFIED
