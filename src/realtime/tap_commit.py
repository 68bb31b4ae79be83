"""Manual (tap) turn commit state and timeout handling.

In tap mode the client commits the user's audio buffer and waits for the
server to acknowledge with ``input_audio_buffer.committed`` before asking for
a response. The timer here guarantees the wait cannot hang: it fires at most
once per armed commit, and a new commit replaces (never stacks) the previous
timer.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class TurnActions(Protocol):
    """Recovery actions a timeout policy may take when a commit is never acknowledged."""

    def request_response(self) -> bool:
        """Send response.create for the current user turn."""
        ...

    def abandon_turn(self) -> None:
        """Give up on the current user turn and return to listening."""
        ...


def fallback_to_response_create(actions: TurnActions) -> None:
    """Default expiry policy: ask for the response anyway."""
    logger.warning("No committed event observed; falling back to response.create")
    actions.request_response()


def abandon_turn(actions: TurnActions) -> None:
    """Alternative expiry policy: drop the turn without requesting a response."""
    logger.warning("No committed event observed; abandoning turn")
    actions.abandon_turn()


@dataclass(frozen=True)
class TapCommitPolicy:
    """Caller-supplied timeout policy for the tap commit flow."""

    timeout_s: float = 1.2
    on_expiry: Callable[[TurnActions], None] = fallback_to_response_create

    @classmethod
    def from_timeout_ms(
        cls,
        timeout_ms: int,
        on_expiry: Callable[[TurnActions], None] = fallback_to_response_create,
    ) -> "TapCommitPolicy":
        return cls(timeout_s=timeout_ms / 1000.0, on_expiry=on_expiry)


@dataclass
class TapCommitState:
    """Whether a commit acknowledgement is outstanding, and its timeout."""

    awaiting_commit: bool = False
    commit_timeout_handle: asyncio.TimerHandle | None = None


class TapCommitTimer:
    """Arms, resolves and cancels the single outstanding commit timeout."""

    def __init__(
        self,
        state: TapCommitState,
        timeout_s: float,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.state = state
        self.timeout_s = timeout_s
        self._loop = loop

    @property
    def awaiting(self) -> bool:
        return self.state.awaiting_commit

    @property
    def has_pending_timer(self) -> bool:
        return self.state.commit_timeout_handle is not None

    def arm(self, on_expired: Callable[[], None]) -> None:
        """Start awaiting a commit, replacing any previous timer.

        Must be called from the event loop that delivers channel messages.
        """
        self._cancel_handle()
        loop = self._loop or asyncio.get_running_loop()
        self.state.awaiting_commit = True
        self.state.commit_timeout_handle = loop.call_later(
            self.timeout_s, self._fire, on_expired
        )

    def resolve(self) -> bool:
        """Mark the awaited commit as acknowledged.

        Returns:
            True if a commit was awaited (the caller now owns the response
            request), False otherwise
        """
        if not self.state.awaiting_commit:
            return False
        self._cancel_handle()
        self.state.awaiting_commit = False
        return True

    def cancel(self) -> None:
        """Drop any outstanding expectation and timer."""
        self._cancel_handle()
        self.state.awaiting_commit = False

    def _cancel_handle(self) -> None:
        handle = self.state.commit_timeout_handle
        if handle is not None:
            handle.cancel()
        self.state.commit_timeout_handle = None

    def _fire(self, on_expired: Callable[[], None]) -> None:
        self.state.commit_timeout_handle = None
        if not self.state.awaiting_commit:
            return
        self.state.awaiting_commit = False
        on_expired()
