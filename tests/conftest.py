from __future__ import annotations

from typing import Callable

import pytest

from fakes import FakeHost, FakeTool


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def fake_tool() -> Callable[..., FakeTool]:
    return FakeTool
