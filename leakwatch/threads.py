"""
Thread detachment for leak tracking.

A thread that is meant to outlive the test that started it (a shared pool
worker, a watchdog) opts out of leak reports by detaching itself. Only the
thread itself can set or clear its own marker.
"""
import threading
from typing import List

from .registry import ObjectRegistry

_detached: ObjectRegistry = ObjectRegistry("detached_threads")


def detach_current_thread() -> threading.Thread:
    """Mark the calling thread as exempt from leak tracking."""
    thread = threading.current_thread()
    _detached.register(thread, True)
    return thread


def attach_current_thread() -> threading.Thread:
    """Undo detach_current_thread() for the calling thread."""
    thread = threading.current_thread()
    _detached.discard(thread)
    return thread


def is_detached(thread: threading.Thread) -> bool:
    return bool(_detached.info(thread))


def tracked_threads() -> List[threading.Thread]:
    """Alive threads other than the caller that have not detached."""
    current = threading.current_thread()
    return [
        thread for thread in threading.enumerate()
        if thread is not current and thread.is_alive() and not is_detached(thread)
    ]


class DetachedThread(threading.Thread):
    """Thread that detaches itself before running its target."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._detach_done = threading.Event()

    def start(self):
        super().start()
        # start() returns only once the marker is set
        self._detach_done.wait()

    def run(self):
        detach_current_thread()
        self._detach_done.set()
        super().run()
