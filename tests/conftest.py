"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from helpers import StubLedger
from permaserve.settings import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    settings = Settings(data_dir=tmp_path / "data")
    settings.ensure_directories()
    return settings


@pytest.fixture
def ledger() -> StubLedger:
    return StubLedger()
