"""Mapping of engine exit statuses onto scan verdicts.

ClamAV's ``clamscan`` exits 0 when no virus was found, 1 when at least one was,
and 2 or higher on any operational error (bad database, unreadable file, ...).
Exit 1 is a verdict, not a failure. Only the constants below need changing for
an engine with a different convention.
"""
from __future__ import annotations

from dataclasses import dataclass

from .engine import ScanInvocation

EXIT_CLEAN = 0
EXIT_INFECTED = 1

CLEAN_MESSAGE = "File is clean - no threats detected"
INFECTED_MESSAGE = "Virus detected"
UNKNOWN_ERROR = "Unknown error"


@dataclass(frozen=True)
class Clean:
    raw_output: str


@dataclass(frozen=True)
class Infected:
    raw_output: str


@dataclass(frozen=True)
class Failure:
    message: str
    details: str


ScanOutcome = Clean | Infected | Failure


def interpret(invocation: ScanInvocation) -> ScanOutcome:
    if invocation.exit_code == EXIT_CLEAN:
        return Clean(raw_output=invocation.stdout or CLEAN_MESSAGE)
    if invocation.exit_code == EXIT_INFECTED:
        return Infected(raw_output=invocation.stdout or INFECTED_MESSAGE)
    return Failure(
        message="Scan failed",
        details=invocation.stderr or invocation.error or UNKNOWN_ERROR,
    )
