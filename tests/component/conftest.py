"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── ad_campaign/   Service, scheduler, handlers and API with mocked I/O
    └── mocks/         Shared mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/ad_campaign -v
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from tests.component.mocks import MockEventBus


def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/component as a component test"""
    for item in items:
        if "/tests/component/" in str(item.fspath).replace(os.sep, "/"):
            item.add_marker(pytest.mark.component)


# =============================================================================
# Event Bus Mocks
# =============================================================================

@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Mock NATS event bus"""
    return MockEventBus()
