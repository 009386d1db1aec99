from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    config_default: str = "/etc/spdk-provisioner/config.yaml"
    report_default: str = "/var/lib/spdk-provisioner/last_run.json"
    log_default: str = "/var/log/spdk-provisioner.log"
    limits_dropin: str = "/etc/security/limits.d/90-spdk-memlock.conf"


PATHS = Paths()
