"""Shared test fixtures for the learning-service test suite."""

from __future__ import annotations

import pytest


@pytest.fixture
def lesson_text() -> str:
    """About 120 words of prose, comfortably sufficient for a quiz."""
    sentence = (
        "Photosynthesis converts light energy into chemical energy stored in glucose "
        "inside the chloroplasts of plant cells. "
    )
    return (sentence * 8).strip()
