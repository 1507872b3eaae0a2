"""
Lifecycle Event Types

GraceEvent is the single normalized shape for every termination trigger,
whether it came from an OS signal or from an unrecoverable fault.
"""

import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


EXIT_OK = 0
EXIT_FAILURE = 1


class GraceKind(str, Enum):
    """Origin of a termination trigger."""
    SIGNAL = "signal"
    FAULT = "fault"


class ShutdownState(str, Enum):
    """
    Process shutdown state.

    Transitions only move forward: running -> draining -> terminated.
    """
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class GraceEvent:
    """
    One detected termination trigger.

    Attributes:
        kind: Signal or fault
        label: Signal name, or where the fault was caught
        error: Originating exception for fault triggers
        timestamp: time.monotonic() reading at detection
    """
    kind: GraceKind
    label: Optional[str] = None
    error: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.monotonic)

    @classmethod
    def from_signal(cls, name: str) -> "GraceEvent":
        return cls(kind=GraceKind.SIGNAL, label=name)

    @classmethod
    def from_fault(cls, error: BaseException, label: Optional[str] = None) -> "GraceEvent":
        return cls(
            kind=GraceKind.FAULT,
            label=label or type(error).__name__,
            error=error
        )

    @property
    def is_fault(self) -> bool:
        return self.kind is GraceKind.FAULT

    @property
    def exit_status(self) -> int:
        """Status for a clean drain: 0 for signals, 1 for faults."""
        return EXIT_FAILURE if self.is_fault else EXIT_OK
