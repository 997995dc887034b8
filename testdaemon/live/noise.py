"""Log noise for exercising a supervisor's stdout/stderr capture.

Two modes, chosen once at startup:

  flood    one random block, rendered as a hex dump over and over onto stdout
           and stderr by two independent threads until each sink has received
           exactly `max_bytes`; then the process exits 1.
  trickle  one short loguru line every `interval_sec`, forever.
"""
from __future__ import annotations

import secrets
import sys
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional, Sequence

from loguru import logger

from testdaemon.core.config import NoiseConfig
from testdaemon.core.outcome import Outcome, Terminator, noise_exhausted, noise_failed

ROW = 16
SINK_BUFFER_SIZE = 64 << 10


def random_block(size: int) -> bytes:
    return secrets.token_bytes(size)


def _printable(row: bytes) -> str:
    return "".join(chr(b) if 32 <= b <= 126 else "." for b in row)


def dump_row(row: bytes) -> bytes:
    """Everything after the offset column for one row of up to 16 bytes."""
    hex_cells = [f"{b:02x}" for b in row] + ["  "] * (ROW - len(row))
    left = " ".join(hex_cells[:8])
    right = " ".join(hex_cells[8:])
    return f"{left}  {right}  |{_printable(row)}|\n".encode("ascii")


class HexDumper:
    """Renders the same block repeatedly with ever increasing offsets.

    Output matches the classic `hexdump -C` layout. Row bodies are computed
    once; only the offset column changes between renders, which keeps every
    line unique across the whole stream.
    """

    def __init__(self, block: bytes):
        if not block or len(block) % ROW:
            raise ValueError(f"block size must be a positive multiple of {ROW}, got {len(block)}")
        self.block_size = len(block)
        self._rows = [dump_row(block[i:i + ROW]) for i in range(0, len(block), ROW)]
        self.offset = 0

    def render(self) -> bytes:
        base = self.offset
        out = b"".join(
            b"%08x  %s" % (base + i * ROW, body) for i, body in enumerate(self._rows)
        )
        self.offset += self.block_size
        return out


@dataclass
class ByteCounter:
    """Bytes written to one sink. Owned by the single thread writing it."""

    cap: int
    count: int = 0

    @property
    def remaining(self) -> int:
        return max(self.cap - self.count, 0)

    @property
    def reached(self) -> bool:
        return self.count >= self.cap

    def add(self, n: int) -> None:
        self.count += n


def flood_sink(sink: BinaryIO, dumper: HexDumper, counter: ByteCounter) -> ByteCounter:
    """Write hex dump text to `sink` until the counter hits its cap exactly."""
    while not counter.reached:
        chunk = dumper.render()
        room = counter.remaining
        if len(chunk) > room:
            chunk = chunk[:room]
        sink.write(chunk)
        counter.add(len(chunk))
    sink.flush()
    return counter


def stdio_sinks() -> List[BinaryIO]:
    # Raw buffered writers over fd 1 and 2; the text wrappers are bypassed.
    sys.stdout.flush()
    sys.stderr.flush()
    return [
        open(sys.stdout.fileno(), "wb", buffering=SINK_BUFFER_SIZE, closefd=False),
        open(sys.stderr.fileno(), "wb", buffering=SINK_BUFFER_SIZE, closefd=False),
    ]


class NoiseGenerator:
    def __init__(
        self,
        config: NoiseConfig,
        terminator: Terminator,
        sinks: Optional[Sequence[BinaryIO]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._terminator = terminator
        self._sinks = sinks
        self._sleep = sleep
        self.counters: List[ByteCounter] = []
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        """Run the configured mode on a daemon thread."""
        if self.config.mode == "flood":
            target = self._flood_then_terminate
        else:
            target = self.run_trickle
        self._thread = threading.Thread(target=target, name=f"noise-{self.config.mode}", daemon=True)
        self._thread.start()
        return self._thread

    def _flood_then_terminate(self) -> None:
        self._terminator(self.run_flood())

    def run_flood(self) -> Outcome:
        """Flood every sink concurrently and report once all are done."""
        block = random_block(self.config.chunk_size)
        sinks = list(self._sinks) if self._sinks is not None else stdio_sinks()
        self.counters = [ByteCounter(cap=self.config.max_bytes) for _ in sinks]
        errors: List[BaseException] = []

        def output(sink: BinaryIO, counter: ByteCounter) -> None:
            try:
                flood_sink(sink, HexDumper(block), counter)
            except OSError as e:
                errors.append(e)

        threads = [
            threading.Thread(target=output, args=(sink, counter), name=f"flood-{i}", daemon=True)
            for i, (sink, counter) in enumerate(zip(sinks, self.counters))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if errors:
            return noise_failed(f"Failed to write random data: {errors[0]}")
        return noise_exhausted()

    def run_trickle(self) -> None:
        interval = self.config.interval_sec
        while True:
            logger.info(self.config.message)
            self._sleep(interval)
