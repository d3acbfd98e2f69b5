"""Root pytest configuration and fixtures.

This module provides:
- Environment setup (loads .env)
- Isolation of ASSET_* settings so tests start from defaults
"""

from __future__ import annotations

import pytest
from dotenv import load_dotenv

from src.config import EnvVar

# Load environment variables from .env file
load_dotenv()


# =============================================================================
# Common Test Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every ASSET_* variable so defaults apply.

    Tests set their own values through the same monkeypatch instance.

    Returns:
        The monkeypatch instance.
    """
    for var in EnvVar:
        monkeypatch.delenv(var.value.name, raising=False)
    return monkeypatch
