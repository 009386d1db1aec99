from __future__ import annotations

import logging
from typing import Optional

from ..host import HostStateView
from ..lib.command import ExternalTool
from ..pipeline import BaseStep
from ..report import Policy, StepState

logger = logging.getLogger(__name__)


class PythonEnvStep(BaseStep):
    """Virtual environment with pyelftools, needed by the DPDK build."""

    step_id = "55_python_env"
    name = "Set up Python virtual environment"
    policy = Policy.FATAL_ON_FAILURE

    def __init__(
        self,
        *,
        venv_dir: str,
        owner: Optional[str] = None,
        python: Optional[ExternalTool] = None,
        venv_python: Optional[ExternalTool] = None,
        chown: Optional[ExternalTool] = None,
        timeout: float = 600,
    ) -> None:
        self.venv_dir = venv_dir
        self.owner = owner
        self.timeout = timeout
        self.python = python or ExternalTool(name="python3", argv=["python3"], timeout=timeout)
        self.venv_python = venv_python or ExternalTool(
            name="venv-python", argv=[f"{venv_dir}/bin/python"], timeout=timeout
        )
        self.chown = chown or ExternalTool(name="chown", argv=["chown"], timeout=300)

    def check(self, host: HostStateView) -> StepState:
        if not host.is_executable(f"{self.venv_dir}/bin/python"):
            return StepState.UNSATISFIED
        r = self.venv_python.invoke(["-c", "import elftools"], check=False)
        return StepState.SATISFIED if r.returncode == 0 else StepState.UNSATISFIED

    def remediate(self, host: HostStateView) -> Optional[str]:
        if not host.is_executable(f"{self.venv_dir}/bin/python"):
            logger.info("Creating virtual environment at %s", self.venv_dir)
            self.python.invoke(["-m", "venv", self.venv_dir])
        pip = self.venv_python
        pip.invoke(["-m", "pip", "install", "--upgrade", "pip"])
        pip.invoke(["-m", "pip", "install", "pyelftools"])
        if self.owner:
            self.chown.invoke(["-R", f"{self.owner}:{self.owner}", self.venv_dir])
        return None
