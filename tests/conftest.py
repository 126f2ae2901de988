"""Shared test configuration."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep real account and settings variables out of every test."""
    for name in list(os.environ):
        if name.startswith("MAILMIRROR_") or (name.startswith("IMAP") and "_" in name):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MAILMIRROR_CONFIG", str(tmp_path / "missing-config.json"))
