"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (NATS here; the ad campaign
repository and HTTP clients live in tests/component/ad_campaign/conftest.py).
"""

from .nats_mock import MockEventBus

__all__ = [
    'MockEventBus',
]
