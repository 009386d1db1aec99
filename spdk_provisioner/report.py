from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class StepState(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    UNKNOWN = "unknown"


class Policy(str, Enum):
    FATAL_ON_FAILURE = "fatal_on_failure"
    WARN_AND_CONTINUE = "warn_and_continue"
    REQUIRES_REBOOT = "requires_reboot"


class OutcomeKind(str, Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"
    REBOOT_REQUIRED = "reboot_required"


class RunStatus(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"
    REBOOT_REQUIRED = "reboot_required"


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REBOOT_REQUIRED = 3
EXIT_CANCELLED = 130


@dataclass(frozen=True)
class StepOutcome:
    kind: OutcomeKind
    reason: Optional[str] = None
    degraded: bool = False
    fatal: bool = False
    error_kind: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str = "already satisfied", *, degraded: bool = False) -> "StepOutcome":
        return cls(OutcomeKind.SKIPPED, reason=reason, degraded=degraded)

    @classmethod
    def applied(cls, note: Optional[str] = None) -> "StepOutcome":
        return cls(OutcomeKind.APPLIED, reason=note, degraded=note is not None)

    @classmethod
    def failed(cls, reason: str, *, fatal: bool, error_kind: Optional[str] = None) -> "StepOutcome":
        return cls(OutcomeKind.FAILED, reason=reason, degraded=not fatal, fatal=fatal, error_kind=error_kind)

    @classmethod
    def reboot_required(cls, reason: str, *, error_kind: Optional[str] = None) -> "StepOutcome":
        return cls(OutcomeKind.REBOOT_REQUIRED, reason=reason, error_kind=error_kind)

    @property
    def halts(self) -> bool:
        return self.fatal or self.kind is OutcomeKind.REBOOT_REQUIRED

    def describe(self) -> str:
        label = {
            OutcomeKind.SKIPPED: "Skipped",
            OutcomeKind.APPLIED: "Applied",
            OutcomeKind.FAILED: "Failed",
            OutcomeKind.REBOOT_REQUIRED: "RebootRequired",
        }[self.kind]
        if self.reason:
            return f"{label} ({self.reason})"
        return label


@dataclass(frozen=True)
class StepResult:
    step_id: str
    name: str
    outcome: StepOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "outcome": self.outcome.kind.value,
            "reason": self.outcome.reason,
            "degraded": self.outcome.degraded,
            "fatal": self.outcome.fatal,
            "error_kind": self.outcome.error_kind,
        }


@dataclass
class RunReport:
    """Ordered, append-only record of one run.

    Only the engine appends. Once finalized the report is read-only.
    """

    _results: List[StepResult] = field(default_factory=list)
    cancelled: bool = False
    finalized: bool = False

    def append(self, step_id: str, name: str, outcome: StepOutcome) -> StepResult:
        if self.finalized:
            raise RuntimeError("RunReport is finalized")
        result = StepResult(step_id=step_id, name=name, outcome=outcome)
        self._results.append(result)
        return result

    def finalize(self, *, cancelled: bool = False) -> "RunReport":
        if not self.finalized:
            self.cancelled = cancelled
            self.finalized = True
        return self

    @property
    def results(self) -> Tuple[StepResult, ...]:
        return tuple(self._results)

    def outcome_of(self, step_id: str) -> Optional[StepOutcome]:
        for r in self._results:
            if r.step_id == step_id:
                return r.outcome
        return None

    @property
    def status(self) -> RunStatus:
        if any(r.outcome.kind is OutcomeKind.REBOOT_REQUIRED for r in self._results):
            return RunStatus.REBOOT_REQUIRED
        if any(r.outcome.fatal for r in self._results):
            return RunStatus.FAILED
        if self.cancelled:
            return RunStatus.FAILED
        if any(r.outcome.degraded for r in self._results):
            return RunStatus.DEGRADED
        return RunStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return EXIT_CANCELLED
        status = self.status
        if status is RunStatus.REBOOT_REQUIRED:
            return EXIT_REBOOT_REQUIRED
        if status is RunStatus.FAILED:
            return EXIT_FAILED
        return EXIT_OK

    def counts(self) -> Dict[OutcomeKind, int]:
        counts = {kind: 0 for kind in OutcomeKind}
        for r in self._results:
            counts[r.outcome.kind] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "cancelled": self.cancelled,
            "results": [r.to_dict() for r in self._results],
        }
