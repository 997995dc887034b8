"""
Process outcomes.

Every way the daemon can stop is described by an `Outcome`. Components decide
*that* the process ends and with which status; only `terminate` actually ends
it. Tests swap `terminate` for a recorder so the decision can be checked
without killing the test process.
"""
from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

DEFAULT_CRASH_STATUS = 2
FAILURE_STATUS = 1
EXIT_STATUS_MASK = 0xFF

_STATUS_RE = re.compile(r"[+-]?[0-9]+")


class StartupError(Exception):
    """Raised when the daemon cannot reach the running state."""


class OutcomeKind(str, Enum):
    CRASHED = "crashed"
    NOISE_EXHAUSTED = "noise_exhausted"
    NOISE_FAILED = "noise_failed"
    TRANSPORT_FAILED = "transport_failed"
    STARTUP_FAILED = "startup_failed"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    status: int
    reason: str = ""


Terminator = Callable[[Outcome], None]


def resolve_crash_status(raw: Optional[str]) -> int:
    """Exit status requested by a crash call; 2 when missing or not an integer.

    Only plain ASCII decimal integers with an optional sign are accepted. The
    value is reduced to the 0-255 range the OS keeps, so -1 becomes 255.
    """
    if raw is None or not _STATUS_RE.fullmatch(raw):
        return DEFAULT_CRASH_STATUS
    return int(raw, 10) & EXIT_STATUS_MASK


def crash_outcome(raw: Optional[str]) -> Outcome:
    status = resolve_crash_status(raw)
    return Outcome(OutcomeKind.CRASHED, status, f"crashing with status {status}")


def noise_exhausted() -> Outcome:
    return Outcome(OutcomeKind.NOISE_EXHAUSTED, FAILURE_STATUS, "noise volume cap reached on all sinks")


def noise_failed(reason: str) -> Outcome:
    return Outcome(OutcomeKind.NOISE_FAILED, FAILURE_STATUS, reason)


def transport_failed(reason: str) -> Outcome:
    return Outcome(OutcomeKind.TRANSPORT_FAILED, FAILURE_STATUS, reason)


def startup_failed(reason: str) -> Outcome:
    return Outcome(OutcomeKind.STARTUP_FAILED, FAILURE_STATUS, reason)


def _report(outcome: Outcome) -> None:
    if outcome.kind is OutcomeKind.CRASHED:
        sys.stderr.write(outcome.reason + "\n")
    elif outcome.kind is OutcomeKind.STARTUP_FAILED:
        logger.critical(outcome.reason)
    elif outcome.kind in (OutcomeKind.TRANSPORT_FAILED, OutcomeKind.NOISE_FAILED):
        logger.error(outcome.reason)
    # noise_exhausted exits silently: stderr ends with the capped dump.
    for stream in (sys.stdout, sys.stderr):
        stream.flush()


def terminate(outcome: Outcome) -> None:
    """End the whole process immediately with the outcome's status.

    No atexit handlers, no thread joins and no companion cleanup: os._exit is
    used so a crash from any thread is abrupt. Pending stdio is flushed first
    so the diagnostic line is not lost; a failure while reporting never stops
    the exit.
    """
    try:
        _report(outcome)
    finally:
        os._exit(outcome.status & EXIT_STATUS_MASK)
