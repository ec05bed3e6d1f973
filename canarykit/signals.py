"""Shutdown signal handling: first signal requests a stop, the second exits."""

from __future__ import annotations

import os
import signal
import sys
import threading

_lock = threading.Lock()
_installed = False


def shutdown_signals() -> tuple[signal.Signals, ...]:
    """The signals that request a shutdown on this platform."""
    if sys.platform == "win32":
        return (signal.SIGINT,)
    return (signal.SIGINT, signal.SIGTERM)


def setup_signal_handler() -> threading.Event:
    """Install the shutdown handlers and return an event set on the first signal.

    A second signal terminates the process with exit code 1. May be called once only.
    """
    global _installed
    with _lock:
        if _installed:
            raise RuntimeError("signal handler already set up")
        _installed = True

    stop = threading.Event()

    def handle(signum: int, frame: object) -> None:
        if stop.is_set():
            os._exit(1)
        stop.set()

    for sig in shutdown_signals():
        signal.signal(sig, handle)
    return stop