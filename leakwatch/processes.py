"""
Child process reaping and discovery.

The checker collects every child the example left behind. Exited children
are reaped with waitpid(); in non-blocking mode children that are still
running are found through psutil and reported without waiting for them.
"""
import logging
import os
from typing import FrozenSet, List, Tuple

import psutil

logger = logging.getLogger(__name__)


def can_reap() -> bool:
    """waitpid(-1, ...) is POSIX only."""
    return hasattr(os, "waitpid") and hasattr(os, "WNOHANG")


def describe_status(status: int) -> str:
    """Human readable form of a raw waitpid() status."""
    if os.WIFSIGNALED(status):
        return f"signal {os.WTERMSIG(status)}"
    if os.WIFEXITED(status):
        return f"exit {os.WEXITSTATUS(status)}"
    return f"status {status}"


def reap_children(blocking: bool = False) -> List[Tuple[int, str]]:
    """
    Reap outstanding child processes.

    Args:
        blocking: Wait for every child to exit; otherwise only children
            that already exited are collected

    Returns:
        List of (pid, status description) in reap order
    """
    if not can_reap():
        logger.debug("waitpid(-1) unsupported, subprocess checks disabled")
        return []

    flags = 0 if blocking else os.WNOHANG
    reaped: List[Tuple[int, str]] = []
    while True:
        try:
            pid, status = os.waitpid(-1, flags)
        except ChildProcessError:
            break
        if pid == 0:
            # remaining children are still running
            break
        reaped.append((pid, describe_status(status)))
    return reaped


def running_children() -> List[psutil.Process]:
    """Direct children of this process that have not exited yet."""
    try:
        children = psutil.Process().children(recursive=False)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []

    running = []
    for child in children:
        try:
            if child.status() != psutil.STATUS_ZOMBIE:
                running.append(child)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return running


def capture_children() -> FrozenSet[int]:
    return frozenset(child.pid for child in running_children())


def describe_running(child: psutil.Process) -> str:
    try:
        return f"running ({child.name()})"
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return "running"
