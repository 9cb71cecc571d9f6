"""
Shared fixtures for bimsync tests.
"""

import logging

import pytest
from fakes import FakeClock

from bimsync.config.singleton import GlobalConfig
from bimsync.runtime.loader import RUNTIME_CACHE


@pytest.fixture(autouse=True)
def reset_process_state():
    """Reset global config, logging handlers and the runtime cache around each test."""
    GlobalConfig.reset_config()
    RUNTIME_CACHE.reset()
    yield
    GlobalConfig.reset_config()
    RUNTIME_CACHE.reset()
    logging.getLogger("bimsync").handlers.clear()


@pytest.fixture
def clock():
    return FakeClock()
