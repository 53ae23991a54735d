"""Shared fixtures for the test-suite."""
from __future__ import annotations

import pytest

from molecules import make_monoisotopic_iso, make_toy_iso


@pytest.fixture
def toy_iso():
    return make_toy_iso()


@pytest.fixture
def monoisotopic_iso():
    return make_monoisotopic_iso()
