from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config import SetupConfig, load_setup_config
from .errors import PermissionDenied
from .host import HostStateView, LocalHost
from .lib.bootloader import grub_regenerate_tool
from .lib.env import PATHS
from .lib.hwdetect import detect_os_family
from .lib.pkg import DnfPackageManager, default_packages, package_manager_for
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import ProvisioningStep, run_pipeline
from .report import EXIT_FAILED, OutcomeKind, RunReport, RunStatus
from .state_store import load_report, save_report
from .steps import (
    BindNvmeStep,
    BuildSpdkStep,
    CloneSpdkStep,
    ConfigureHugepagesStep,
    EnableIommuStep,
    EnableReposStep,
    InstallPackagesStep,
    MemlockLimitStep,
    NvmeSelector,
    PythonEnvStep,
    SmokeTestStep,
)

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = PATHS.config_default
DEFAULT_REPORT_PATH = PATHS.report_default

_KIND_LABELS = {
    OutcomeKind.SKIPPED: "Skipped",
    OutcomeKind.APPLIED: "Applied",
    OutcomeKind.FAILED: "Failed",
    OutcomeKind.REBOOT_REQUIRED: "Reboot required",
}


def build_steps(cfg: SetupConfig, os_family: str) -> List[ProvisioningStep]:
    """Ordered step list; reboot-requiring steps come before the long build."""

    pkg_timeout = cfg.timeout("package")
    manager = package_manager_for(os_family, timeout=pkg_timeout)
    packages = cfg.packages(os_family) or default_packages(os_family)
    binaries = [cfg.identify_bin, cfg.hello_world_bin]
    selector = NvmeSelector(cfg.nvme_bdf, protected_extra=cfg.protected_bdfs)

    steps: List[ProvisioningStep] = []
    if os_family == "rhel":
        steps.append(EnableReposStep(DnfPackageManager(timeout=pkg_timeout)))

    steps += [
        InstallPackagesStep(manager, packages),
        ConfigureHugepagesStep(
            desired=cfg.hugepages_desired,
            page_size_kb=cfg.hugepage_size_kb,
            reserved_kb=cfg.hugepages_reserved_kb,
            reduction=cfg.reduction_policy,
            mount_point=cfg.hugepages_mount_point,
            settle_s=cfg.hugepages_settle_s,
        ),
        MemlockLimitStep(min_kb=cfg.memlock_min_kb, owner=cfg.owner),
        EnableIommuStep(
            os_family=os_family,
            regenerate=grub_regenerate_tool(os_family, timeout=cfg.timeout("default")),
            flag=cfg.iommu_flag,
        ),
        CloneSpdkStep(
            spdk_dir=cfg.spdk_dir,
            parent_dir=cfg.spdk_parent_dir,
            repo_url=cfg.spdk_repo_url,
            owner=cfg.owner,
            timeout=cfg.timeout("clone"),
        ),
        PythonEnvStep(venv_dir=cfg.venv_dir, owner=cfg.owner, timeout=cfg.timeout("package")),
        BuildSpdkStep(
            spdk_dir=cfg.spdk_dir,
            venv_dir=cfg.venv_dir,
            binaries=binaries,
            configure_flags=cfg.configure_flags,
            jobs=cfg.jobs,
            timeout=cfg.timeout("build"),
        ),
        BindNvmeStep(
            selector=selector,
            target_driver=cfg.target_driver,
            expected_ids=cfg.nvme_vendor_device,
            force_bind=cfg.force_bind,
        ),
        SmokeTestStep(
            spdk_dir=cfg.spdk_dir,
            binaries=binaries,
            selector=selector,
            target_driver=cfg.target_driver,
            page_size_kb=cfg.hugepage_size_kb,
            timeout=cfg.timeout("smoke"),
        ),
    ]
    return steps


def ensure_root(host: HostStateView) -> None:
    if host.euid() != 0:
        raise PermissionDenied("This provisioner must be run as root (use sudo).")


def summary_lines(report: RunReport) -> List[str]:
    lines = []
    for r in report.results:
        lines.append(f"  {r.step_id:<22} {r.outcome.describe()}")

    for kind, count in report.counts().items():
        if not count:
            continue
        names = ", ".join(r.step_id for r in report.results if r.outcome.kind is kind)
        lines.append(f"{_KIND_LABELS[kind]}: {count} ({names})")

    last = report.results[-1] if report.results else None
    status = report.status
    if report.cancelled:
        lines.append("CANCELLED: run interrupted; re-run to continue from current host state.")
    elif status is RunStatus.REBOOT_REQUIRED and last is not None:
        lines.append(f"REBOOT REQUIRED: {last.outcome.reason}. Reboot the host, then run this provisioner again.")
    elif status is RunStatus.FAILED and last is not None:
        lines.append(f"FAILED at {last.step_id}: {last.outcome.reason}")
    elif status is RunStatus.DEGRADED:
        lines.append("COMPLETED WITH WARNINGS: SPDK setup finished in a degraded state (see above).")
    else:
        lines.append("SUCCESS: SPDK setup and tests completed successfully.")
    return lines


def run(
    *,
    config_path: str = DEFAULT_CONFIG_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    report_path: str = DEFAULT_REPORT_PATH,
    host: Optional[HostStateView] = None,
) -> RunReport:
    """Provision the host and persist the run report."""

    configure_logging(log_path=log_path)
    host = host if host is not None else LocalHost()

    ensure_root(host)

    previous = load_report(report_path)
    if previous.get("status") == RunStatus.REBOOT_REQUIRED.value:
        logger.info("Previous run asked for a reboot; re-checking every step from the start")

    cfg = load_setup_config(config_path)
    os_family = cfg.os_family if cfg.os_family != "auto" else detect_os_family(host)
    logger.info("Host family: %s", os_family)

    report = RunReport()
    try:
        return run_pipeline(steps=build_steps(cfg, os_family), host=host, report=report)
    except Exception:
        logger.exception("Provisioner failed")
        raise
    finally:
        save_report(report_path, report.finalize())


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="spdk-provisioner",
        description="Prepare this host for SPDK. Safe to re-run; run again after any requested reboot.",
    )
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config (optional)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to provisioner log")
    p.add_argument("--report", default=DEFAULT_REPORT_PATH, help="Where to write the run report (json|yaml)")

    args = p.parse_args(argv)

    try:
        report = run(config_path=args.config, log_path=args.log, report_path=args.report)
    except PermissionDenied as e:
        print(f"Error: {e}")
        return EXIT_FAILED
    except Exception as e:
        print(f"FAILED: {e}")
        return EXIT_FAILED

    for line in summary_lines(report):
        print(line)
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
