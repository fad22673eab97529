"""Unit tests for settings validation.

Run with: pytest tests/unit/test_config.py -v
"""

import pytest
from pydantic import ValidationError

from campusgraph.config import Settings


class TestGraphDepthBounds:
    """Tests for the traversal depth caps."""

    def test_default_cap(self):
        assert Settings().graph_max_depth == 5

    def test_cap_cannot_exceed_five(self, monkeypatch):
        monkeypatch.setenv("CAMPUSGRAPH_GRAPH_MAX_DEPTH", "6")

        with pytest.raises(ValidationError):
            Settings()

    def test_lower_cap_allowed(self, monkeypatch):
        monkeypatch.setenv("CAMPUSGRAPH_GRAPH_MAX_DEPTH", "3")

        assert Settings().graph_max_depth == 3
