"""
Tests for thread detachment.
"""
import threading

from leakwatch.threads import (
    DetachedThread,
    attach_current_thread,
    detach_current_thread,
    is_detached,
    tracked_threads,
)


class TestDetachment:
    """Test that threads can opt in and out of tracking."""

    def test_detach_and_attach_again(self):
        states = []
        proceed = threading.Event()
        done = threading.Event()

        def body():
            thread = detach_current_thread()
            states.append(is_detached(thread))
            attach_current_thread()
            states.append(is_detached(thread))
            done.set()
            proceed.wait()

        worker = threading.Thread(target=body)
        worker.start()
        done.wait()
        try:
            assert states == [True, False]
            assert worker in tracked_threads()
        finally:
            proceed.set()
            worker.join()

    def test_detached_thread_marked_before_start_returns(self):
        stop = threading.Event()
        worker = DetachedThread(target=stop.wait, name="detached")
        worker.start()
        try:
            assert is_detached(worker)
            assert worker not in tracked_threads()
        finally:
            stop.set()
            worker.join()

    def test_current_thread_never_tracked(self):
        assert threading.current_thread() not in tracked_threads()

    def test_finished_thread_not_tracked(self):
        worker = threading.Thread(target=lambda: None)
        worker.start()
        worker.join()
        assert worker not in tracked_threads()
