"""Error taxonomy for provisioning steps.

Steps translate collaborator failures (exit codes, OSError from sysfs writes,
timeouts) into one of these kinds; the engine routes on the class only.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def _normalize_context_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_context_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def normalize_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a JSON-friendly copy of an error context mapping."""
    return {str(key): _normalize_context_value(val) for key, val in context.items()}


class ProvisioningError(Exception):
    """Base error for classified provisioning failures."""

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Mapping[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.context = normalize_context(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self), "context": self.context}


class PermissionDenied(ProvisioningError):
    """Not running with the privilege the provisioner needs."""


class DependencyMissing(ProvisioningError):
    """A package or tool is still absent after an install attempt."""


class ResourceInsufficient(ProvisioningError):
    """A constrained resource could not reach its absolute minimum."""


class ConfigurationPending(ProvisioningError):
    """A change is in place but only takes effect after a reboot."""


class ExternalToolFailure(ProvisioningError):
    """A collaborator exited unexpectedly or timed out."""


class SafetyViolation(ProvisioningError):
    """An action would touch protected boot resources. Never downgraded."""
