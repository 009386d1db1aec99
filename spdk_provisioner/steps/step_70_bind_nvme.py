from __future__ import annotations

import logging
from typing import Iterable, Optional, Set, Tuple

from ..errors import ExternalToolFailure, ProvisioningError, SafetyViolation
from ..host import HostStateView
from ..lib.block import protected_bdfs
from ..lib.command import ExternalTool
from ..lib.pci import (
    bind,
    current_driver,
    device_ids,
    device_present,
    driver_available,
    list_nvme_controllers,
    normalize_bdf,
    register_id,
    unbind,
)
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


class NvmeSelector:
    """Pick the NVMe controller to hand to SPDK, from host state only."""

    def __init__(self, bdf: str = "auto", *, protected_extra: Iterable[str] = ()) -> None:
        self.bdf = bdf if bdf == "auto" else normalize_bdf(bdf)
        self.protected_extra = {normalize_bdf(b) for b in protected_extra}

    def protected(self, host: HostStateView) -> Set[str]:
        return protected_bdfs(host, extra=self.protected_extra)

    def select(self, host: HostStateView) -> Optional[str]:
        if self.bdf != "auto":
            return self.bdf
        controllers = list_nvme_controllers(host)
        if not controllers:
            return None
        protected = self.protected(host)
        for c in controllers:
            if c not in protected:
                return c
        return controllers[0]


class BindNvmeStep(BaseStep):
    step_id = "70_bind_nvme"
    name = "Bind NVMe device to userspace driver"
    policy = Policy.WARN_AND_CONTINUE

    def __init__(
        self,
        *,
        selector: NvmeSelector,
        target_driver: str = "vfio-pci",
        expected_ids: Optional[Tuple[str, str]] = None,
        force_bind: bool = False,
        modprobe: Optional[ExternalTool] = None,
    ) -> None:
        self.selector = selector
        self.target_driver = target_driver
        self.expected_ids = expected_ids
        self.force_bind = force_bind
        self.modprobe = modprobe or ExternalTool(name="modprobe", argv=["modprobe"], timeout=60)

    def _bound(self, host: HostStateView, bdf: Optional[str]) -> bool:
        return bdf is not None and current_driver(host, bdf) == self.target_driver

    def check(self, host: HostStateView) -> StepState:
        return StepState.SATISFIED if self._bound(host, self.selector.select(host)) else StepState.UNSATISFIED

    def guard(self, host: HostStateView) -> Optional[str]:
        bdf = self.selector.select(host)
        if bdf is None:
            return "no NVMe controller found; continuing without device binding"
        if not device_present(host, bdf):
            return f"NVMe device {bdf} not present; continuing without device binding"

        ids = device_ids(host, bdf)
        if self.expected_ids and ids != self.expected_ids:
            found = ":".join(ids) if ids else "unknown"
            want = ":".join(self.expected_ids)
            return f"{bdf} is {found}, expected {want}; not binding"

        if bdf in self.selector.protected(host):
            msg = f"{bdf} hosts the mounted root/boot filesystem"
            if self.force_bind:
                raise SafetyViolation(f"Refusing to bind {msg}", context={"bdf": bdf})
            return f"protected: {msg}"
        return None

    def remediate(self, host: HostStateView) -> Optional[str]:
        bdf = self.selector.select(host)
        if bdf is None or bdf in self.selector.protected(host):
            raise SafetyViolation(f"Refusing to unbind protected or unknown device {bdf}", context={"bdf": bdf})

        ids = device_ids(host, bdf)
        if ids is None:
            raise ExternalToolFailure(f"Cannot read vendor/device ids for {bdf}")

        previous = unbind(host, bdf)
        try:
            if not driver_available(host, self.target_driver):
                self.modprobe.invoke([self.target_driver])
            register_id(host, self.target_driver, *ids)
            # new_id probes unbound matching devices itself.
            if current_driver(host, bdf) != self.target_driver:
                bind(host, self.target_driver, bdf)
        except ProvisioningError:
            if previous and current_driver(host, bdf) is None:
                logger.warning("Binding %s to %s failed; restoring %s", bdf, self.target_driver, previous)
                try:
                    bind(host, previous, bdf)
                except ExternalToolFailure as e:
                    logger.error("Could not restore %s to %s: %s", bdf, previous, e)
            raise
        return None

    def verify(self, host: HostStateView) -> StepState:
        return StepState.SATISFIED if self._bound(host, self.selector.select(host)) else StepState.UNSATISFIED
