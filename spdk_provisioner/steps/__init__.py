from .step_10_enable_repos import EnableReposStep
from .step_20_install_packages import InstallPackagesStep
from .step_30_hugepages import ConfigureHugepagesStep
from .step_35_memlock import MemlockLimitStep
from .step_40_iommu import EnableIommuStep
from .step_50_clone_spdk import CloneSpdkStep
from .step_55_python_env import PythonEnvStep
from .step_60_build_spdk import BuildSpdkStep
from .step_70_bind_nvme import BindNvmeStep, NvmeSelector
from .step_80_smoke_tests import SmokeTestStep

__all__ = [
    "EnableReposStep",
    "InstallPackagesStep",
    "ConfigureHugepagesStep",
    "MemlockLimitStep",
    "EnableIommuStep",
    "CloneSpdkStep",
    "PythonEnvStep",
    "BuildSpdkStep",
    "BindNvmeStep",
    "NvmeSelector",
    "SmokeTestStep",
]
