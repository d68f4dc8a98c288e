"""Snowflake-style 64-bit id generator.

Layout, most significant bit first::

    | 1 bit | 41 bits              | 5 bits        | 5 bits    | 12 bits  |
    | 0     | ms since epoch       | datacenter id | worker id | sequence |

A generator instance owns its ``last_timestamp``/``sequence`` pair and
serializes the whole check-and-update of every ``next_id`` call behind one
lock, so ids from a single instance are unique and strictly increasing.

Backward clock jumps up to ``max_clock_backward_ms`` are absorbed by waiting
for the clock to catch up; larger jumps raise ``ClockMovedBackwardError``.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from commonkit.errors import (
    ClockMovedBackwardError,
    ClockWaitInterruptedError,
    CommonKitError,
    InvalidArgumentError,
)

if TYPE_CHECKING:
    from commonkit.config import Config

logger = logging.getLogger(__name__)

# 2022-01-01T00:00:00Z
DEFAULT_EPOCH_MS = 1640966400000
DEFAULT_MAX_CLOCK_BACKWARD_MS = 5000

SEQUENCE_BITS = 12
WORKER_ID_BITS = 5
DATACENTER_ID_BITS = 5
TIMESTAMP_BITS = 41

MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
MAX_WORKER_ID = (1 << WORKER_ID_BITS) - 1
MAX_DATACENTER_ID = (1 << DATACENTER_ID_BITS) - 1
MAX_TIMESTAMP = (1 << TIMESTAMP_BITS) - 1

WORKER_ID_SHIFT = SEQUENCE_BITS
DATACENTER_ID_SHIFT = SEQUENCE_BITS + WORKER_ID_BITS
TIMESTAMP_SHIFT = SEQUENCE_BITS + WORKER_ID_BITS + DATACENTER_ID_BITS

_UINT64_MASK = (1 << 64) - 1


def _current_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class IdInfo:
    """Fields decoded from a snowflake id. ``timestamp`` is absolute epoch ms."""

    id: int
    timestamp: int
    datacenter_id: int
    worker_id: int
    sequence: int

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> dict[str, int | str]:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'datacenter_id': self.datacenter_id,
            'worker_id': self.worker_id,
            'sequence': self.sequence,
            'datetime': self.datetime.isoformat(),
        }


class SnowflakeIdGenerator:
    """Thread-safe generator of time-ordered 64-bit ids.

    Args:
        datacenter_id: Datacenter part of the node identity, 0-31.
        worker_id: Worker part of the node identity, 0-31.
        epoch_ms: Reference instant for the timestamp field, in epoch ms.
        max_clock_backward_ms: Largest backward clock jump absorbed by waiting.
        clock: Zero-arg callable returning wall-clock milliseconds.
        sleep: Callable taking seconds, used for the clock-backward wait.
            Defaults to an interruptible wait (see ``interrupt``).

    Raises:
        InvalidArgumentError: If either id is outside 0-31.

    Example:
        >>> generator = SnowflakeIdGenerator(datacenter_id=1, worker_id=3)
        >>> info = generator.parse_id(generator.next_id())
        >>> (info.datacenter_id, info.worker_id)
        (1, 3)
    """

    def __init__(
        self,
        datacenter_id: int,
        worker_id: int,
        *,
        epoch_ms: int = DEFAULT_EPOCH_MS,
        max_clock_backward_ms: int = DEFAULT_MAX_CLOCK_BACKWARD_MS,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        _validate_id('datacenter_id', datacenter_id, MAX_DATACENTER_ID)
        _validate_id('worker_id', worker_id, MAX_WORKER_ID)
        if max_clock_backward_ms < 0:
            raise InvalidArgumentError(
                f'max_clock_backward_ms must be non-negative: {max_clock_backward_ms}'
            )

        self._datacenter_id = datacenter_id
        self._worker_id = worker_id
        self._epoch_ms = epoch_ms
        self._max_clock_backward_ms = max_clock_backward_ms
        self._clock = clock or _current_millis
        self._interrupt = threading.Event()
        self._sleep = sleep or self._interrupt.wait

        self._lock = threading.Lock()
        self._last_timestamp = -1
        self._sequence = 0

    @classmethod
    def create_default(cls, datacenter_id: int = 0) -> SnowflakeIdGenerator:
        """Create a generator with a randomly chosen worker id."""
        return cls(datacenter_id, random.randint(0, MAX_WORKER_ID))

    @classmethod
    def from_config(cls, config: Config) -> SnowflakeIdGenerator:
        worker_id = config.worker_id
        if worker_id is None:
            worker_id = random.randint(0, MAX_WORKER_ID)
            logger.info('No worker id configured, picked %d at random', worker_id)
        return cls(
            config.datacenter_id,
            worker_id,
            epoch_ms=config.epoch_ms,
            max_clock_backward_ms=config.max_clock_backward_ms,
        )

    @property
    def datacenter_id(self) -> int:
        return self._datacenter_id

    @property
    def worker_id(self) -> int:
        return self._worker_id

    @property
    def epoch_ms(self) -> int:
        return self._epoch_ms

    @property
    def max_clock_backward_ms(self) -> int:
        return self._max_clock_backward_ms

    def next_id(self) -> int:
        """Return the next id.

        May block: up to ``max_clock_backward_ms`` after a tolerated backward
        clock jump, or briefly when 4096 ids were already issued in the
        current millisecond.

        Raises:
            ClockMovedBackwardError: The clock moved back beyond tolerance.
            ClockWaitInterruptedError: ``interrupt`` was called during the wait.
        """
        with self._lock:
            now = self._clock()
            last = self._last_timestamp

            if now < last:
                self._wait_for_clock(now, last)
                now = max(self._clock(), last)

            if now == last:
                sequence = (self._sequence + 1) & MAX_SEQUENCE
                if sequence == 0:
                    now = self._til_next_millis(last)
            else:
                sequence = 0

            # Assemble before committing so a rejected timestamp leaves no trace.
            snowflake_id = self._assemble(now, sequence)
            self._sequence = sequence
            self._last_timestamp = now
            return snowflake_id

    def next_ids(self, count: int) -> list[int]:
        if count <= 0:
            raise InvalidArgumentError(f'count must be positive: {count}')
        return [self.next_id() for _ in range(count)]

    def parse_id(self, snowflake_id: int) -> IdInfo:
        """Decode ``snowflake_id`` using this generator's epoch.

        Any 64-bit value is accepted; negative values are read as their
        unsigned two's complement. The node identity is not checked against
        this generator's own.
        """
        value = snowflake_id & _UINT64_MASK
        return IdInfo(
            id=value,
            timestamp=(value >> TIMESTAMP_SHIFT) + self._epoch_ms,
            datacenter_id=(value >> DATACENTER_ID_SHIFT) & MAX_DATACENTER_ID,
            worker_id=(value >> WORKER_ID_SHIFT) & MAX_WORKER_ID,
            sequence=value & MAX_SEQUENCE,
        )

    def interrupt(self) -> None:
        """Abort a pending clock-backward wait.

        The waiting ``next_id`` call raises ``ClockWaitInterruptedError``. If no
        call is waiting, the next wait is aborted instead.
        """
        self._interrupt.set()

    def _wait_for_clock(self, now: int, last: int) -> None:
        backward_ms = last - now
        if backward_ms > self._max_clock_backward_ms:
            raise ClockMovedBackwardError(
                f'Clock moved backwards too much. Current: {now}, Last: {last}, '
                f'Backward: {backward_ms}ms',
                current=now,
                last=last,
            )

        logger.warning('Clock moved backwards by %dms, waiting for it to catch up', backward_ms)
        self._sleep(backward_ms / 1000)
        if self._interrupt.is_set():
            self._interrupt.clear()
            raise ClockWaitInterruptedError(
                'Interrupted while waiting for clock recovery', current=now, last=last
            )

    def _til_next_millis(self, last: int) -> int:
        timestamp = self._clock()
        while timestamp <= last:
            timestamp = self._clock()
        return timestamp

    def _assemble(self, timestamp: int, sequence: int) -> int:
        offset = timestamp - self._epoch_ms
        if offset < 0:
            raise CommonKitError(
                f'Clock {timestamp} is before the configured epoch {self._epoch_ms}'
            )
        if offset > MAX_TIMESTAMP:
            raise CommonKitError(f'Timestamp offset {offset} overflows {TIMESTAMP_BITS} bits')
        return (
            (offset << TIMESTAMP_SHIFT)
            | ((self._datacenter_id & MAX_DATACENTER_ID) << DATACENTER_ID_SHIFT)
            | ((self._worker_id & MAX_WORKER_ID) << WORKER_ID_SHIFT)
            | (sequence & MAX_SEQUENCE)
        )


def _validate_id(name: str, value: int, maximum: int) -> None:
    if not 0 <= value <= maximum:
        raise InvalidArgumentError(f'{name} must be between 0 and {maximum}: {value}')
