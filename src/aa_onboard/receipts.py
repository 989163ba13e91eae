# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.receipts module

Confirmation polling for ERC-4337 UserOperations.

A bundler accepts a UserOperation and returns its hash long before the
EntryPoint has executed it. The only durable signal that the operation was
processed is the UserOperationEvent the EntryPoint emits. ReceiptPoller
turns that eventually-consistent log into a synchronous answer: Found with
the transaction hash, or TimedOut once the wall-clock budget is spent.

Each attempt searches backward from the current chain head over a fixed
window instead of advancing a cursor, so an event emitted before polling
started is still found.

Reference:
  - EIP-4337 (EntryPoint.UserOperationEvent)
"""

import logging
import string
import time

logger = logging.getLogger(__name__)

WINDOW_SIZE = 100                # blocks searched behind the chain head
MIN_BLOCK = 100                  # lowest block ever included in a query
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_POLL_INTERVAL_MS = 5_000
HANDLE_BYTES = 32                # UserOperation hashes are bytes32


class InvalidArgument(ValueError):
    """Raised for malformed poller parameters, before any RPC call."""


class PollWindow:
    """Inclusive block range searched by one poll attempt."""

    __slots__ = ("from_block", "to_block")

    def __init__(self, from_block, to_block):
        self.from_block = from_block
        self.to_block = to_block

    @classmethod
    def behind(cls, head):
        """Window ending at ``head``, floored at MIN_BLOCK."""
        return cls(max(MIN_BLOCK, head - WINDOW_SIZE), head)

    @property
    def is_empty(self):
        return self.from_block > self.to_block

    def __eq__(self, other):
        if not isinstance(other, PollWindow):
            return NotImplemented
        return (self.from_block, self.to_block) == (other.from_block, other.to_block)

    def __repr__(self):
        return f"PollWindow({self.from_block}, {self.to_block})"


class Found:
    """Terminal outcome: a UserOperationEvent matched the handle."""

    __slots__ = ("transaction_hash", "event", "attempts")

    def __init__(self, transaction_hash, event, attempts):
        self.transaction_hash = transaction_hash
        self.event = event
        self.attempts = attempts

    def __repr__(self):
        return f"Found({self.transaction_hash!r}, attempts={self.attempts})"


class TimedOut:
    """Terminal outcome: the deadline passed without a matching event.

    This is a normal result, not an error. Callers decide what a missing
    confirmation means for them.
    """

    __slots__ = ("attempts",)

    def __init__(self, attempts):
        self.attempts = attempts

    def __repr__(self):
        return f"TimedOut(attempts={self.attempts})"


def normalize_handle(operation_handle):
    """Return the handle as a 0x-prefixed lowercase hex string.

    Accepts a hex string (with or without 0x) or raw bytes.

    Raises:
        InvalidArgument: if the handle is empty, not hex, or not 32 bytes.
    """
    if isinstance(operation_handle, (bytes, bytearray)):
        if not operation_handle:
            raise InvalidArgument("operation handle must not be empty")
        if len(operation_handle) != HANDLE_BYTES:
            raise InvalidArgument(
                f"operation handle must be {HANDLE_BYTES} bytes, got {len(operation_handle)}"
            )
        return "0x" + bytes(operation_handle).hex()

    if not isinstance(operation_handle, str):
        raise InvalidArgument(
            f"operation handle must be str or bytes, got {type(operation_handle).__name__}"
        )

    digits = operation_handle.strip()
    if digits[:2].lower() == "0x":
        digits = digits[2:]
    if not digits:
        raise InvalidArgument("operation handle must not be empty")
    if any(c not in string.hexdigits for c in digits):
        raise InvalidArgument(f"operation handle is not hex: {operation_handle!r}")
    if len(digits) != HANDLE_BYTES * 2:
        raise InvalidArgument(
            f"operation handle must be {HANDLE_BYTES * 2} hex digits, got {len(digits)}"
        )
    return "0x" + digits.lower()


def _check_positive(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidArgument(f"{name} must be a positive number, got {value!r}")


class ReceiptPoller:
    """Polls an event source until a UserOperation is confirmed or time runs out.

    RPC failures are treated as transient: they are logged and the attempt is
    retried after the poll interval, up to the deadline. Nothing is raised
    for them.

    The poller keeps no per-session state, so a single instance (and the
    event source behind it) can serve concurrent sessions from several
    threads.

    Usage:
        poller = ReceiptPoller(Web3EventSource(w3, entry_point))
        outcome = poller.await_receipt(user_op_hash)
        if isinstance(outcome, Found):
            print(outcome.transaction_hash)
    """

    def __init__(self, event_source, clock=time.monotonic, sleep=time.sleep):
        """
        Args:
            event_source: object with get_block_number() and
                get_user_operation_events(handle, from_block, to_block).
            clock: monotonic clock returning seconds.
            sleep: callable taking seconds to block for.
        """
        self.event_source = event_source
        self._clock = clock
        self._sleep = sleep

    def await_receipt(
        self,
        operation_handle,
        timeout_ms=DEFAULT_TIMEOUT_MS,
        poll_interval_ms=DEFAULT_POLL_INTERVAL_MS,
    ):
        """Wait for the UserOperationEvent matching ``operation_handle``.

        Args:
            operation_handle: UserOperation hash (hex string or bytes).
            timeout_ms: total time budget in milliseconds.
            poll_interval_ms: delay between attempts in milliseconds.

        Returns:
            Found with the first matching event's transaction hash, or
            TimedOut if the deadline passes first.

        Raises:
            InvalidArgument: on an empty handle or non-positive timings.
                No RPC call is made in that case.
        """
        handle = normalize_handle(operation_handle)
        _check_positive("timeout_ms", timeout_ms)
        _check_positive("poll_interval_ms", poll_interval_ms)

        interval = poll_interval_ms / 1000.0
        deadline = self._clock() + timeout_ms / 1000.0
        attempts = 0

        logger.debug("Awaiting receipt for %s (timeout %dms)", handle, timeout_ms)

        while self._clock() < deadline:
            attempts += 1
            try:
                event = self._attempt(handle)
            except Exception as exc:
                logger.warning(
                    "Receipt lookup for %s failed on attempt %d, retrying: %s",
                    handle, attempts, exc,
                )
                event = None

            if event is not None:
                logger.info(
                    "UserOperation %s confirmed in tx %s (success=%s)",
                    handle, event.transaction_hash, event.success,
                )
                return Found(event.transaction_hash, event, attempts)

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(interval, remaining))

        logger.warning(
            "No UserOperationEvent for %s after %d attempts", handle, attempts
        )
        return TimedOut(attempts)

    def _attempt(self, handle):
        """One poll: read the head, search the window behind it.

        Returns:
            The first matching ConfirmationEvent, or None.
        """
        head = self.event_source.get_block_number()
        window = PollWindow.behind(head)
        if window.is_empty:
            logger.debug("Chain head %d below block %d, nothing to search", head, MIN_BLOCK)
            return None

        events = self.event_source.get_user_operation_events(
            handle, window.from_block, window.to_block
        )
        if not events:
            logger.debug("No event for %s in %r", handle, window)
            return None
        return events[0]
