from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.module_builder import ModuleSourceBuilder


@pytest.fixture
def module_builder(tmp_path: Path) -> ModuleSourceBuilder:
    """Provide a reusable module source builder rooted at the pytest tmp_path."""
    return ModuleSourceBuilder(tmp_path)
