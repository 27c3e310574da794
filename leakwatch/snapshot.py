"""
Point-in-time capture of the resources the leak checker tracks.

Each capture_* function reads one category and has no side effects. A
category the platform cannot enumerate comes back empty rather than
raising, so the checker degrades instead of failing the suite.
"""
import logging
import os
import sys
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from .config import Encodings, GlobalFlags, LeakCheckConfig
from .processes import capture_children
from .tempfiles import TrackedTempFile, creation_count, live_tempfiles
from .threads import tracked_threads

logger = logging.getLogger(__name__)

FD_DIRECTORIES = ("/proc/self/fd", "/dev/fd")

# sys.monitoring accepts tool ids 0..5
_MONITORING_TOOL_IDS = range(6)


@dataclass(frozen=True)
class Snapshot:
    """Everything the checker compares between two examples."""

    descriptors: FrozenSet[int] = frozenset()
    tempfile_count: int = -1
    tempfiles: FrozenSet[TrackedTempFile] = frozenset()
    threads: FrozenSet[threading.Thread] = frozenset()
    children: FrozenSet[int] = frozenset()
    environment: Dict[str, str] = field(default_factory=dict)
    argv: Tuple[str, ...] = ()
    global_flags: Optional[GlobalFlags] = None
    encodings: Optional[Encodings] = None
    trace_hooks: FrozenSet[str] = frozenset()

    def replace(self, **changes) -> "Snapshot":
        return replace(self, **changes)


def capture_descriptors(directories=FD_DIRECTORIES) -> FrozenSet[int]:
    """
    Open descriptor numbers of this process.

    Listing the directory opens a descriptor of its own, which shows up in
    the listing and is already closed once listdir() returns; fstat() weeds
    it out.

    Returns:
        Set of fd numbers, empty when no descriptor directory exists
    """
    for directory in directories:
        if not os.path.isdir(directory):
            continue
        try:
            names = os.listdir(directory)
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            continue
        descriptors = set()
        for name in names:
            if not name.isdigit():
                continue
            fd = int(name)
            try:
                os.fstat(fd)
            except OSError:
                continue
            descriptors.add(fd)
        return frozenset(descriptors)
    logger.debug("No descriptor directory available, descriptor checks disabled")
    return frozenset()


def capture_tempfiles(previous_count: int = -1) -> Tuple[int, FrozenSet[TrackedTempFile]]:
    """
    Live tracked temp files, skipping enumeration when none were created.

    Args:
        previous_count: Creation counter seen by the previous capture

    Returns:
        Tuple of (counter value, handles); handles is empty when the
        counter did not move
    """
    count = creation_count()
    if count == previous_count:
        return previous_count, frozenset()
    return count, frozenset(live_tempfiles())


def capture_threads() -> FrozenSet[threading.Thread]:
    return frozenset(tracked_threads())


def capture_environment() -> Dict[str, str]:
    return dict(os.environ)


def capture_argv() -> Tuple[str, ...]:
    return tuple(str(arg) for arg in sys.argv)


def capture_global_flags(provider: Callable[[], GlobalFlags]) -> GlobalFlags:
    return provider()


def capture_encodings(provider: Callable[[], Encodings]) -> Encodings:
    return provider()


def capture_trace_hooks() -> FrozenSet[str]:
    """Descriptions of every tracing or profiling hook currently installed."""
    hooks = set()

    trace = sys.gettrace()
    if trace is not None:
        hooks.add(f"sys.settrace({trace!r})")
    profile = sys.getprofile()
    if profile is not None:
        hooks.add(f"sys.setprofile({profile!r})")

    # threading.gettrace/getprofile exist since 3.10
    for kind in ("trace", "profile"):
        getter = getattr(threading, f"get{kind}", None)
        hook = getter() if getter is not None else None
        if hook is not None:
            hooks.add(f"threading.set{kind}({hook!r})")

    monitoring = getattr(sys, "monitoring", None)
    if monitoring is not None:
        for tool_id in _MONITORING_TOOL_IDS:
            name = monitoring.get_tool(tool_id)
            if name is None:
                continue
            events = monitoring.get_events(tool_id)
            if events:
                hooks.add(f"sys.monitoring tool {tool_id} ({name}) events={events:#x}")

    return frozenset(hooks)


def take_snapshot(config: LeakCheckConfig, previous: Optional[Snapshot] = None) -> Snapshot:
    """
    Capture every enabled category.

    Args:
        config: Decides which categories are captured and supplies the
            flags and encodings providers
        previous: Last snapshot, used for the temp file counter shortcut

    Returns:
        New Snapshot; skipped categories keep their empty defaults
    """
    checks = config.checks
    previous_count = previous.tempfile_count if previous is not None else -1

    descriptors = capture_descriptors() if checks("fds") else frozenset()
    if checks("tempfiles"):
        tempfile_count, tempfiles = capture_tempfiles(previous_count)
    else:
        tempfile_count, tempfiles = previous_count, frozenset()

    return Snapshot(
        descriptors=descriptors,
        tempfile_count=tempfile_count,
        tempfiles=tempfiles,
        threads=capture_threads() if checks("threads") else frozenset(),
        children=capture_children() if checks("subprocesses") and not config.blocking_reap else frozenset(),
        environment=capture_environment() if checks("environment") else {},
        argv=capture_argv() if checks("argv") else (),
        global_flags=capture_global_flags(config.flags_provider) if checks("globals") else None,
        encodings=capture_encodings(config.encodings_provider) if checks("encodings") else None,
        trace_hooks=capture_trace_hooks() if checks("tracing") else frozenset(),
    )
