"""
Lifecycle Package

This package provides process lifecycle management including:
- Normalized termination triggers (events.py)
- Configuration-keyed resource caches (cache.py)
- Graceful shutdown state machine (shutdown.py)
- Signal and fault detection (signals.py)
- The per-process lifecycle object (manager.py)
- Startup warm-up (startup.py)
- FastAPI dependencies (dependencies.py)
"""

from .events import GraceEvent, GraceKind, ShutdownState, EXIT_OK, EXIT_FAILURE
from .cache import (
    Acquired,
    AcquireOutcome,
    CachedResource,
    Conflict,
    ResourceCache,
    ResourceFingerprint,
)
from .shutdown import ShutdownOrchestrator, DEBOUNCE_WINDOW_SEC, hard_exit
from .signals import SignalListener, TERMINATION_SIGNALS
from .manager import LifecycleManager
from .startup import startup_handler

__all__ = [
    # Events
    "GraceEvent",
    "GraceKind",
    "ShutdownState",
    "EXIT_OK",
    "EXIT_FAILURE",

    # Resource cache
    "Acquired",
    "AcquireOutcome",
    "CachedResource",
    "Conflict",
    "ResourceCache",
    "ResourceFingerprint",

    # Shutdown
    "ShutdownOrchestrator",
    "DEBOUNCE_WINDOW_SEC",
    "hard_exit",
    "SignalListener",
    "TERMINATION_SIGNALS",

    # Lifecycle
    "LifecycleManager",
    "startup_handler",
]
