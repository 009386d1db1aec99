from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional, Sequence

from ..errors import ExternalToolFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 600.0


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _tail(text: str, lines: int = 20) -> str:
    return "\n".join((text or "").strip().splitlines()[-lines:])


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_S,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr for diagnostics.
    - Timeouts and missing executables raise ExternalToolFailure.
    """

    argv_list = list(argv)
    logger.info("CMD %s", _fmt_argv(argv_list))

    started = time.monotonic()
    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ExternalToolFailure(
            f"Command timed out after {timeout}s: {_fmt_argv(argv_list)}",
            context={"argv": argv_list, "timeout_s": timeout},
            cause=e,
        ) from e
    except OSError as e:
        raise ExternalToolFailure(
            f"Command could not be started: {_fmt_argv(argv_list)}: {e}",
            context={"argv": argv_list},
            cause=e,
        ) from e
    duration = time.monotonic() - started

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise ExternalToolFailure(
            f"Command failed ({p.returncode}): {_fmt_argv(argv_list)}\n{_tail(p.stderr)}",
            context={"argv": argv_list, "returncode": p.returncode},
        )

    return CmdResult(
        argv=argv_list,
        returncode=p.returncode,
        stdout=p.stdout,
        stderr=p.stderr,
        duration_s=duration,
    )


@dataclass
class ExternalTool:
    """A collaborator invoked as an opaque process.

    ``argv`` is the fixed prefix (``["make"]``, ``["git"]``); per-call
    arguments are appended by :meth:`invoke`. Exit codes outside
    ``expected_codes`` raise ExternalToolFailure when ``check`` is set.
    """

    name: str
    argv: Sequence[str]
    cwd: Optional[str] = None
    env: Optional[Mapping[str, str]] = None
    timeout: Optional[float] = DEFAULT_TIMEOUT_S
    expected_codes: FrozenSet[int] = field(default_factory=lambda: frozenset({0}))

    def invoke(
        self,
        args: Sequence[str] = (),
        *,
        timeout: Optional[float] = None,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
    ) -> CmdResult:
        merged_env = dict(self.env or {})
        merged_env.update(env or {})
        r = run_cmd(
            [*self.argv, *args],
            check=False,
            env=merged_env,
            cwd=self.cwd,
            timeout=timeout if timeout is not None else self.timeout,
        )
        if check and r.returncode not in self.expected_codes:
            raise ExternalToolFailure(
                f"{self.name} exited with {r.returncode}: {_fmt_argv(r.argv)}\n{_tail(r.stderr)}",
                context={"tool": self.name, "argv": r.argv, "returncode": r.returncode},
            )
        return r
