"""Shared fixtures."""

from __future__ import annotations

import os

import pytest

from buildloop.utils.errors import set_debug_mode


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep BUILDLOOP_* variables from the host out of every test."""
    for name in list(os.environ):
        if name.startswith("BUILDLOOP_"):
            monkeypatch.delenv(name, raising=False)
    yield
    set_debug_mode(False)
