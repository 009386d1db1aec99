from __future__ import annotations

import logging
from pathlib import Path

import pytest

from spdk_provisioner.logging_utils import FALLBACK_LOG_NAME, configure_logging


@pytest.fixture
def clean_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in root.handlers:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
    for attr in ("_spdk_provisioner_configured", "_spdk_provisioner_log_path"):
        if hasattr(root, attr):
            delattr(root, attr)


def test_logs_to_requested_file(tmp_path: Path, clean_root) -> None:
    path = tmp_path / "log" / "provisioner.log"

    assert configure_logging(str(path), also_console=False) == str(path)
    logging.getLogger("spdk_provisioner.test").debug("CMD make -j8")

    assert "CMD make -j8" in path.read_text(encoding="utf-8")


def test_second_call_keeps_first_configuration(tmp_path: Path, clean_root) -> None:
    first = configure_logging(str(tmp_path / "a.log"), also_console=False)
    count = len(clean_root.handlers)

    assert configure_logging(str(tmp_path / "b.log")) == first
    assert len(clean_root.handlers) == count


def test_unwritable_location_falls_back_to_cwd(tmp_path: Path, monkeypatch, clean_root) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    chosen = configure_logging(str(blocker / "provisioner.log"), also_console=False)

    assert chosen == str(Path.cwd() / FALLBACK_LOG_NAME)
