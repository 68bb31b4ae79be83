"""Unit tests for the tap commit timer and timeout policies."""

import asyncio
from unittest.mock import Mock

import pytest

from src.realtime.tap_commit import (
    TapCommitPolicy,
    TapCommitState,
    TapCommitTimer,
    abandon_turn,
    fallback_to_response_create,
)

TIMEOUT_S = 0.02


@pytest.fixture
def timer() -> TapCommitTimer:
    """Timer over a fresh commit state."""
    return TapCommitTimer(TapCommitState(), TIMEOUT_S)


class TestTapCommitTimer:
    """Test suite for TapCommitTimer."""

    @pytest.mark.asyncio
    async def test_fires_once_after_timeout(self, timer: TapCommitTimer) -> None:
        """Test an unacknowledged commit fires the expiry exactly once."""
        on_expired = Mock()
        timer.arm(on_expired)

        assert timer.awaiting is True
        assert timer.has_pending_timer is True

        await asyncio.sleep(TIMEOUT_S * 4)

        on_expired.assert_called_once()
        assert timer.awaiting is False
        assert timer.has_pending_timer is False

    @pytest.mark.asyncio
    async def test_resolve_prevents_expiry(self, timer: TapCommitTimer) -> None:
        """Test an acknowledged commit never fires."""
        on_expired = Mock()
        timer.arm(on_expired)

        assert timer.resolve() is True
        assert timer.resolve() is False

        await asyncio.sleep(TIMEOUT_S * 4)
        on_expired.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolve_without_arm(self, timer: TapCommitTimer) -> None:
        """Test a committed event with no outstanding tap is not claimed."""
        assert timer.resolve() is False

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous_timer(self, timer: TapCommitTimer) -> None:
        """Test timers never stack: only the latest callback fires."""
        first = Mock()
        second = Mock()
        timer.arm(first)
        timer.arm(second)

        await asyncio.sleep(TIMEOUT_S * 4)

        first.assert_not_called()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancel(self, timer: TapCommitTimer) -> None:
        on_expired = Mock()
        timer.arm(on_expired)
        timer.cancel()

        await asyncio.sleep(TIMEOUT_S * 4)

        on_expired.assert_not_called()
        assert timer.awaiting is False
        assert timer.has_pending_timer is False

    @pytest.mark.asyncio
    async def test_resolve_after_expiry_is_noop(self, timer: TapCommitTimer) -> None:
        """Test a late committed event after the fallback ran is ignored."""
        on_expired = Mock()
        timer.arm(on_expired)
        await asyncio.sleep(TIMEOUT_S * 4)

        assert timer.resolve() is False
        on_expired.assert_called_once()


class TestTapCommitPolicy:
    """Test suite for TapCommitPolicy and its expiry actions."""

    def test_defaults(self) -> None:
        policy = TapCommitPolicy()
        assert policy.timeout_s == pytest.approx(1.2)
        assert policy.on_expiry is fallback_to_response_create

    def test_from_timeout_ms(self) -> None:
        policy = TapCommitPolicy.from_timeout_ms(2500, on_expiry=abandon_turn)
        assert policy.timeout_s == pytest.approx(2.5)
        assert policy.on_expiry is abandon_turn

    def test_fallback_requests_response(self) -> None:
        actions = Mock()
        fallback_to_response_create(actions)
        actions.request_response.assert_called_once()
        actions.abandon_turn.assert_not_called()

    def test_abandon_does_not_request_response(self) -> None:
        actions = Mock()
        abandon_turn(actions)
        actions.abandon_turn.assert_called_once()
        actions.request_response.assert_not_called()
