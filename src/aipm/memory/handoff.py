"""Handoff coordinator — share the live store with the assistant without locks.

The assistant process cannot be made to honor a file lock, and there is no
IPC channel to it. Access windows are sequenced instead:

    Idle → Preparing → HandedOff → AwaitingReturn → Reclaimed → Idle

``prepare_for_handoff`` makes our last write durable and lets it settle;
``await_release`` polls until the file is usable again, or gives up after a
timeout and lets the caller carry on.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from aipm.memory.codec import decode_line, iter_lines
from aipm.memory.errors import DecodeError

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 0.5
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 30.0


class HandoffState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    HANDED_OFF = "handed_off"
    AWAITING_RETURN = "awaiting_return"
    RECLAIMED = "reclaimed"


class ReleaseOutcome(str, Enum):
    RELEASED = "released"
    TIMEOUT_EXCEEDED = "timeout_exceeded"


def probe_live_store(path: Path) -> bool:
    """True if path is readable, writable and its first record decodes."""
    if not path.is_file() or not os.access(path, os.R_OK | os.W_OK):
        return False
    try:
        for _, text in iter_lines(path):
            decode_line(text)
            break
    except (OSError, DecodeError) as e:
        logger.debug("Live store %s not ready: %s", path, e)
        return False
    return True


class HandoffCoordinator:
    """Per-session state machine around the shared live store."""

    def __init__(
        self,
        live_path: Path,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.live_path = live_path
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._state = HandoffState.IDLE

    @property
    def state(self) -> HandoffState:
        return self._state

    def _transition(self, expected: HandoffState, new: HandoffState) -> None:
        if self._state is not expected:
            raise RuntimeError(
                f"Cannot move to {new.value}: handoff is {self._state.value}, "
                f"expected {expected.value}"
            )
        logger.debug("Handoff %s -> %s", self._state.value, new.value)
        self._state = new

    def prepare_for_handoff(self) -> None:
        """Flush the live store to disk and wait for it to settle."""
        self._transition(HandoffState.IDLE, HandoffState.PREPARING)
        if self.live_path.exists():
            with self.live_path.open("rb") as f:
                os.fsync(f.fileno())
        self._sleep(self.settle_delay)
        self._transition(HandoffState.PREPARING, HandoffState.HANDED_OFF)
        logger.info("Live store %s handed off", self.live_path)

    def await_release(self, timeout: float = DEFAULT_TIMEOUT) -> ReleaseOutcome:
        """Poll until the live store is usable again, for at most ``timeout`` seconds.

        Always ends in Reclaimed; a timeout is reported, not raised.
        """
        self._transition(HandoffState.HANDED_OFF, HandoffState.AWAITING_RETURN)
        deadline = self._clock() + timeout
        outcome = ReleaseOutcome.TIMEOUT_EXCEEDED
        while True:
            if probe_live_store(self.live_path):
                outcome = ReleaseOutcome.RELEASED
                break
            if self._clock() >= deadline:
                break
            self._sleep(self.poll_interval)

        self._transition(HandoffState.AWAITING_RETURN, HandoffState.RECLAIMED)
        if outcome is ReleaseOutcome.TIMEOUT_EXCEEDED:
            logger.warning(
                "Live store %s not released within %.1fs, proceeding anyway",
                self.live_path,
                timeout,
            )
        else:
            logger.info("Live store %s reclaimed", self.live_path)
        return outcome

    def reset(self) -> None:
        """Close the cycle: Reclaimed → Idle."""
        self._transition(HandoffState.RECLAIMED, HandoffState.IDLE)
