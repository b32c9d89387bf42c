"""Shared test fixtures for the pdf-filler test suite."""

from __future__ import annotations

import pytest


@pytest.fixture
def sample_document() -> dict[str, object]:
    return {"name": "Ann Example", "date_of_birth": "1990-04-01", "agree": True}
