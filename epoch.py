"""
Request epochs — the staleness guard for asynchronous refreshes.

Every refresh captures the epoch it was started under; when its network
calls come back, it may only publish results if that epoch is still the
current one. A slow earlier request therefore can never overwrite the
results of a faster later one: results land in commit order, not arrival
order.
"""

from dataclasses import dataclass


class RequestEpoch:
    """Monotonically increasing request-generation counter."""

    def __init__(self) -> None:
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> "EpochToken":
        """Start a new generation and return a token for it."""
        self._value += 1
        return EpochToken(self, self._value)

    def is_current(self, value: int) -> bool:
        return value == self._value


@dataclass(frozen=True)
class EpochToken:
    """The epoch captured by one asynchronous run."""
    source: RequestEpoch
    value: int

    @property
    def is_stale(self) -> bool:
        return not self.source.is_current(self.value)
