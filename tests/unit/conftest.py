"""Shared fixtures for realtime transport unit tests."""

from collections.abc import Callable

import pytest

from src.realtime.tap_commit import TapCommitPolicy
from tests.helpers.realtime_fakes import TEST_TAP_TIMEOUT_S, TransportRig, build_rig


@pytest.fixture
def make_rig() -> Callable[..., TransportRig]:
    """Factory for transports wired to fresh fakes."""
    return build_rig


@pytest.fixture
def rig() -> TransportRig:
    """Transport with an isolated guard and a short tap commit timeout."""
    return build_rig(tap_policy=TapCommitPolicy(timeout_s=TEST_TAP_TIMEOUT_S))
