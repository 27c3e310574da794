"""
Leak checker: diff the process state around each example.

The checker keeps one baseline snapshot. check() takes a fresh snapshot,
compares it category by category, collects a message for every divergence
and then adopts the fresh snapshot as the new baseline, so a leak is
reported at the example that introduced it and never again.

Every category is checked on every call; one failing category never hides
another.
"""
import gc
import logging
from typing import Any, List, NamedTuple, Optional, Tuple

from .config import LeakCheckConfig
from .io_tracking import descriptor_owners, describe_os_descriptors
from .processes import describe_running, reap_children, running_children
from .snapshot import Snapshot, capture_descriptors, take_snapshot

logger = logging.getLogger(__name__)


class LeakRecord(NamedTuple):
    """One leak message and the category that produced it."""

    category: str
    message: str


def describe_example(example: Any) -> str:
    description = getattr(example, "description", None)
    if description:
        return str(description)
    return str(example) if example is not None else "(no example)"


class LeakChecker:
    """Compares process resources against a baseline between examples."""

    def __init__(self, config: Optional[LeakCheckConfig] = None):
        self.config = config or LeakCheckConfig()
        self.records: List[LeakRecord] = []
        self.example: Any = None
        self._baseline = take_snapshot(self.config)

    @property
    def leaks(self) -> List[str]:
        return [record.message for record in self.records]

    @property
    def baseline(self) -> Snapshot:
        return self._baseline

    def check(self, example: Any = None) -> bool:
        """
        Diff the current state against the baseline and re-baseline.

        Args:
            example: The example that just finished, used in log output

        Returns:
            True when nothing leaked; messages are left in self.leaks
        """
        self.example = example
        self.records = []
        checks = self.config.checks
        baseline = self._baseline
        current = take_snapshot(self.config, previous=baseline)

        if checks("fds"):
            self._check_descriptors(baseline, current)
        if checks("tempfiles"):
            current = self._check_tempfiles(baseline, current)
        if checks("threads"):
            self._check_threads(baseline, current)
        if checks("subprocesses"):
            current = self._check_subprocesses(baseline, current)
        if checks("environment"):
            self._check_environment(baseline, current)
        if checks("argv"):
            self._check_argv(baseline, current)
        if checks("globals"):
            self._check_global_flags(baseline, current)
        if checks("encodings"):
            self._check_encodings(baseline, current)
        if checks("tracing"):
            self._check_trace_hooks(baseline, current)

        if self.records:
            if self.config.gc_on_leak:
                # give leaked objects a chance to close their descriptors
                gc.collect()
            if checks("fds"):
                current = current.replace(descriptors=capture_descriptors())

        self._baseline = current
        return not self.records

    def check_example(self, example: Any = None) -> Tuple[bool, List[str]]:
        ok = self.check(example)
        return ok, list(self.leaks)

    def _leak(self, category: str, message: str) -> None:
        if not self.records:
            logger.warning(describe_example(self.example))
        self.records.append(LeakRecord(category, message))
        logger.warning(message)

    def _check_descriptors(self, baseline: Snapshot, current: Snapshot) -> None:
        for fd in sorted(baseline.descriptors - current.descriptors):
            self._leak("fds", f"Closed file descriptor: {fd}")

        leaked = sorted(current.descriptors - baseline.descriptors)
        if not leaked:
            return

        owners = descriptor_owners()
        os_descriptions = None
        for fd in leaked:
            detail = ""
            entries = owners.get(fd)
            if entries:
                parts = sorted(
                    f" {entry.description}" + ("" if entry.autoclose else "(not-autoclose)")
                    for entry in entries
                )
                detail = " :" + "".join(parts)
            else:
                if os_descriptions is None:
                    os_descriptions = describe_os_descriptors()
                if fd in os_descriptions:
                    detail = f" : {os_descriptions[fd]}"
            self._leak("fds", f"Leaked file descriptor: {fd}{detail}")

        for fd, entries in sorted(owners.items()):
            if len(entries) <= 1:
                continue
            if sum(1 for entry in entries if entry.autoclose) > 1:
                listing = "".join(sorted(
                    f" {entry.description}" + ("(autoclose)" if entry.autoclose else "")
                    for entry in entries
                ))
                self._leak("fds", f"Multiple autoclose IO object for a file descriptor:{listing}")

    def _check_tempfiles(self, baseline: Snapshot, current: Snapshot) -> Snapshot:
        if current.tempfile_count == baseline.tempfile_count:
            # nothing was created, keep the known set
            return current.replace(tempfiles=baseline.tempfiles)

        leaked = current.tempfiles - baseline.tempfiles
        for description in sorted(repr(handle) for handle in leaked):
            self._leak("tempfiles", f"Leaked tempfile: {description}")
        for handle in leaked:
            description = repr(handle)
            try:
                handle.release()
            except OSError as e:
                logger.warning(f"Could not release {description}: {e}")
        return current.replace(tempfiles=current.tempfiles - leaked)

    def _check_threads(self, baseline: Snapshot, current: Snapshot) -> None:
        for description in sorted(repr(thread) for thread in baseline.threads - current.threads):
            self._leak("threads", f"Finished thread: {description}")
        for description in sorted(repr(thread) for thread in current.threads - baseline.threads):
            self._leak("threads", f"Leaked thread: {description}")

    def _check_subprocesses(self, baseline: Snapshot, current: Snapshot) -> Snapshot:
        reaped = reap_children(blocking=self.config.blocking_reap)
        for pid, status in reaped:
            # children seen running at the previous check were reported then
            if pid in baseline.children:
                continue
            self._leak("subprocesses", f"Leaked subprocess: {pid}: {status}")

        reaped_pids = {pid for pid, _ in reaped}
        if self.config.blocking_reap:
            return current
        for child in sorted(running_children(), key=lambda child: child.pid):
            if child.pid in baseline.children or child.pid in reaped_pids:
                continue
            if child.pid not in current.children:
                # started after the snapshot, picked up by the next check
                continue
            self._leak("subprocesses", f"Leaked subprocess: {child.pid}: {describe_running(child)}")
        return current.replace(children=current.children - reaped_pids)

    def _check_environment(self, baseline: Snapshot, current: Snapshot) -> None:
        old_env, new_env = baseline.environment, current.environment
        if old_env == new_env:
            return

        for key in sorted(set(old_env) | set(new_env)):
            if key in old_env and key in new_env:
                if old_env[key] != new_env[key]:
                    self._leak(
                        "environment",
                        f"Environment variable changed: {key!r} changed: "
                        f"{old_env[key]!r} -> {new_env[key]!r}"
                    )
            elif key in old_env:
                self._leak("environment", f"Environment variable changed: {key!r} deleted (was {old_env[key]!r})")
            else:
                self._leak("environment", f"Environment variable changed: {key!r} added: {new_env[key]!r}")

    def _check_argv(self, baseline: Snapshot, current: Snapshot) -> None:
        if current.argv != baseline.argv:
            self._leak("argv", f"argv changed: {list(baseline.argv)!r} to {list(current.argv)!r}")

    def _check_global_flags(self, baseline: Snapshot, current: Snapshot) -> None:
        old_flags, new_flags = baseline.global_flags, current.global_flags
        if old_flags is None or new_flags is None or old_flags == new_flags:
            return
        for name in old_flags._fields:
            old_value, new_value = getattr(old_flags, name), getattr(new_flags, name)
            if old_value != new_value:
                self._leak("globals", f"Global flag {name} changed: {old_value!r} to {new_value!r}")

    def _check_encodings(self, baseline: Snapshot, current: Snapshot) -> None:
        old, new = baseline.encodings, current.encodings
        if old is None or new is None:
            return
        if new.internal != old.internal:
            self._leak("encodings", f"Default internal encoding changed: {old.internal!r} to {new.internal!r}")
        if new.external != old.external:
            self._leak("encodings", f"Default external encoding changed: {old.external!r} to {new.external!r}")

    def _check_trace_hooks(self, baseline: Snapshot, current: Snapshot) -> None:
        for hook in sorted(current.trace_hooks - baseline.trace_hooks):
            self._leak("tracing", f"Trace hook is still enabled: {hook}")
