"""Shared test fixtures: isolated settings and a host without CONSTELLATION_* leakage.

Tests that need a real container runtime are marked with
``@pytest.mark.integration`` and skipped when docker is not on PATH.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from constellation.bridge.settings import _get_settings_cached


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Drop CONSTELLATION_* env vars and any ``.env`` for the duration of a test."""
    for key in list(os.environ):
        if key.startswith("CONSTELLATION_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()
