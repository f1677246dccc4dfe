"""Shared pytest fixtures for the loki-shipper test suite."""

from __future__ import annotations

import io

import pytest

from loki_shipper.backup import BackupStore
from loki_shipper.fallback import FallbackChannel


@pytest.fixture()
def fallback_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture()
def fallback(fallback_stream) -> FallbackChannel:
    """Fallback channel writing into an in-memory stream."""
    return FallbackChannel(stream=fallback_stream)


@pytest.fixture()
def backup_path(tmp_path) -> str:
    return str(tmp_path / "logs" / "loki_backup.log")


@pytest.fixture()
def backup(backup_path, fallback) -> BackupStore:
    return BackupStore(backup_path, fallback)

