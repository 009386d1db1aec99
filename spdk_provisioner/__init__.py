"""SPDK host provisioner (state-checked, re-runnable).

Core design goals:
- Every step checks host state before touching it
- Safe to re-run from the start after a reboot
- Protected boot devices are never rebound
- Centralized logging
"""

__all__ = []
