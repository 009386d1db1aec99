from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from .errors import ConfigurationPending, ProvisioningError, SafetyViolation
from .host import HostStateView
from .report import OutcomeKind, Policy, RunReport, StepOutcome, StepState

logger = logging.getLogger(__name__)


class ProvisioningStep(Protocol):
    """A single idempotent step.

    ``check``, ``guard`` and ``verify`` only observe the host; ``remediate``
    is the only phase allowed to change it.
    """

    step_id: str
    name: str
    policy: Policy

    def check(self, host: HostStateView) -> StepState:
        ...

    def guard(self, host: HostStateView) -> Optional[str]:
        ...

    def remediate(self, host: HostStateView) -> Optional[str]:
        ...

    def verify(self, host: HostStateView) -> StepState:
        ...


class BaseStep:
    step_id = ""
    name = ""
    policy = Policy.FATAL_ON_FAILURE
    reboot_reason = "reboot required for the change to take effect"

    def check(self, host: HostStateView) -> StepState:
        raise NotImplementedError

    def guard(self, host: HostStateView) -> Optional[str]:
        """Reason to skip remediation on this host, or None to proceed."""
        return None

    def remediate(self, host: HostStateView) -> Optional[str]:
        """Change host state; may return a warning note (degraded success)."""
        raise NotImplementedError

    def verify(self, host: HostStateView) -> StepState:
        return self.check(host)


def _on_failure(step: ProvisioningStep, reason: str, error_kind: Optional[str]) -> StepOutcome:
    fatal = step.policy is not Policy.WARN_AND_CONTINUE
    return StepOutcome.failed(reason, fatal=fatal, error_kind=error_kind)


def run_step(step: ProvisioningStep, host: HostStateView) -> StepOutcome:
    try:
        state = step.check(host)
        if state is StepState.SATISFIED:
            return StepOutcome.skipped()

        logger.info("%s is %s", step.step_id, state.value)
        skip_reason = step.guard(host)
        if skip_reason:
            return StepOutcome.skipped(skip_reason, degraded=True)

        note = step.remediate(host)
        verified = step.verify(host)
    except SafetyViolation as e:
        return StepOutcome.failed(str(e), fatal=True, error_kind=e.kind)
    except ConfigurationPending as e:
        return StepOutcome.reboot_required(str(e), error_kind=e.kind)
    except ProvisioningError as e:
        return _on_failure(step, str(e), e.kind)

    if verified is StepState.SATISFIED:
        return StepOutcome.applied(note)
    if step.policy is Policy.REQUIRES_REBOOT:
        return StepOutcome.reboot_required(step_reboot_reason(step), error_kind=ConfigurationPending.__name__)
    return _on_failure(step, f"still {verified.value} after remediation", None)


def step_reboot_reason(step: ProvisioningStep) -> str:
    return str(getattr(step, "reboot_reason", BaseStep.reboot_reason))


def _log_outcome(step: ProvisioningStep, outcome: StepOutcome) -> None:
    if outcome.kind is OutcomeKind.FAILED and outcome.fatal:
        logger.error("%s: %s", step.name, outcome.describe())
    elif outcome.kind is OutcomeKind.FAILED or outcome.degraded:
        logger.warning("%s: %s", step.name, outcome.describe())
    elif outcome.kind is OutcomeKind.REBOOT_REQUIRED:
        logger.warning("%s: %s", step.name, outcome.describe())
    else:
        logger.info("%s: %s", step.name, outcome.describe())


def run_pipeline(
    *,
    steps: Sequence[ProvisioningStep],
    host: HostStateView,
    report: Optional[RunReport] = None,
) -> RunReport:
    """Run steps in order; halt on fatal failures and reboot requests."""

    report = report if report is not None else RunReport()
    total = len(steps)
    current = None

    try:
        for i, step in enumerate(steps, start=1):
            current = step.step_id
            logger.info("==> [%d/%d] %s", i, total, step.name)
            outcome = run_step(step, host)
            report.append(step.step_id, step.name, outcome)
            _log_outcome(step, outcome)
            if outcome.halts:
                logger.info("Halting after %s", step.step_id)
                break
    except KeyboardInterrupt:
        logger.warning("Run cancelled during %s", current)
        return report.finalize(cancelled=True)

    return report.finalize()
