"""
Fast-exit policy for interrupts and memory faults.

An interrupted or crashed run must not flush further output and must not
go through normal interpreter teardown, since closing the storage
libraries' handles at that point can hang. Interrupts end the process with
os._exit(), so no atexit handler or buffered file runs. Memory faults
(SIGSEGV/SIGBUS) cannot be handled from Python code; faulthandler dumps the
traceback and the default action kills the process without teardown.
"""
from __future__ import annotations

import faulthandler
import os
import signal
import sys

EXIT_STATUS = 1

_INTERRUPT_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGHUP") if hasattr(signal, name)
)

# handlers in place before install_fast_exit(), by signal number
_previous: dict = {}


def _end_early(signum, frame) -> None:
    sys.stderr.write("Got Ctrl-C or similar.  Exiting.\n")
    sys.stderr.flush()
    os._exit(EXIT_STATUS)


def install_fast_exit() -> None:
    """Install the interrupt handlers and enable faulthandler for SEGV/BUS."""
    faulthandler.enable(file=sys.__stderr__, all_threads=False)
    for sig in _INTERRUPT_SIGNALS:
        prev = signal.signal(sig, _end_early)
        _previous.setdefault(sig, prev)


def restore_default_handlers() -> None:
    """Put back whatever handlers were installed before install_fast_exit()."""
    faulthandler.disable()
    while _previous:
        sig, prev = _previous.popitem()
        # None means the handler was not installed from Python
        signal.signal(sig, signal.SIG_DFL if prev is None else prev)
