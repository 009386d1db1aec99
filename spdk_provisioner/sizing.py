"""Sizing of constrained kernel resources (hugepages).

Pure functions only; callers pass ``apply``/``observe`` callables that touch
the host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Union

from .errors import ResourceInsufficient

logger = logging.getLogger(__name__)


class _Exhausted:
    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED = _Exhausted()


class AllocationGrade(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class ReductionPolicy:
    factor: float = 0.5
    floor: int = 128
    minimum: int = 64
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if not 0 < self.factor < 1:
            raise ValueError(f"factor must be in (0, 1), got {self.factor}")
        if self.minimum < 0 or self.floor < 0:
            raise ValueError("floor and minimum must be non-negative")
        if self.minimum > self.floor:
            raise ValueError(f"minimum ({self.minimum}) must not exceed floor ({self.floor})")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass(frozen=True)
class AllocationResult:
    target: int
    requested: List[int] = field(default_factory=list)
    actual: int = 0
    grade: AllocationGrade = AllocationGrade.FAILED


def compute_target(
    *,
    mem_total_kb: int,
    reserved_kb: int,
    page_size_kb: int,
    desired: int,
    floor: int,
    minimum: int,
) -> int:
    """Pick a page count that fits in memory left after the reserve.

    ``desired`` is halved while it exceeds what memory can hold, as long as
    the half stays at or above ``floor``; below that the raw maximum is used.
    """

    max_pages = max(mem_total_kb - reserved_kb, 0) // page_size_kb
    if max_pages < minimum:
        raise ResourceInsufficient(
            f"Only {max_pages} pages of {page_size_kb}kB fit after reserving {reserved_kb}kB "
            f"(need at least {minimum})",
            context={"mem_total_kb": mem_total_kb, "max_pages": max_pages, "minimum": minimum},
        )

    target = desired
    while target > max_pages and target // 2 >= floor:
        target //= 2
    return min(target, max_pages)


def next_attempt(requested: int, observed: int, floor: int, factor: float = 0.5) -> Union[int, _Exhausted]:
    """Next request after the kernel granted ``observed`` < ``requested``."""

    if observed >= requested:
        raise ValueError(f"observed {observed} already satisfies requested {requested}")
    reduced = max(int(requested * factor), floor)
    if reduced >= requested:
        return EXHAUSTED
    return reduced


def classify_allocation(actual: int, target: int, minimum: int) -> AllocationGrade:
    if actual < minimum:
        return AllocationGrade.FAILED
    if actual < target:
        return AllocationGrade.DEGRADED
    return AllocationGrade.SUCCESS


def allocate_with_reduction(
    target: int,
    *,
    apply: Callable[[int], None],
    observe: Callable[[], int],
    policy: ReductionPolicy,
) -> AllocationResult:
    requested = target
    attempts: List[int] = []
    actual = 0

    for _ in range(policy.max_attempts):
        apply(requested)
        attempts.append(requested)
        actual = observe()
        if actual >= requested:
            break
        logger.info("Only %d of %d pages allocated", actual, requested)
        nxt = next_attempt(requested, actual, policy.floor, policy.factor)
        if isinstance(nxt, _Exhausted):
            break
        logger.info("Retrying with reduced request %d", nxt)
        requested = nxt

    grade = classify_allocation(actual, target, policy.minimum)
    return AllocationResult(target=target, requested=attempts, actual=actual, grade=grade)
