"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aztoolkit.config import ToolkitConfig  # noqa: E402

TEST_SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def config() -> ToolkitConfig:
    """Configuration with a subscription and fast polling."""
    return ToolkitConfig(subscription_id=TEST_SUBSCRIPTION_ID, poll_interval_seconds=1)
