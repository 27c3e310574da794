"""
Runner lifecycle integration for the leak checker.

LeakCheckerAction hooks a LeakChecker into any runner that can register
"start" and "after" handlers and run code in a protected block where a
failure is recorded against one example without stopping the run.

Concrete purpose: capture a baseline at suite start, check after each example.
Easy to use correctly: action.register(runner) is the whole setup.
Hard to use incorrectly: after() refuses to run before start().
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from .checker import LeakChecker, describe_example
from .config import LeakCheckConfig
from .errors import LeakError
from .nss import normalize_name_service_lookups

logger = logging.getLogger(__name__)

START = "start"
AFTER = "after"


class Runner(Protocol):
    """What the action needs from a test runner."""

    def register(self, event: str, handler: Callable) -> None:
        ...

    def protect(self, location: str, fn: Callable[[], Any]) -> Any:
        ...


def example_location(example: Any) -> str:
    """Description of the example, followed by file:line when known."""
    location = describe_example(example)
    source = getattr(example, "source_location", None)
    if source:
        location = f"{location}\n{':'.join(str(part) for part in source)}"
    return location


class LeakCheckerAction:
    """Drives a LeakChecker from runner lifecycle events."""

    def __init__(self, config: Optional[LeakCheckConfig] = None):
        self.config = config or LeakCheckConfig()
        self.checker: Optional[LeakChecker] = None
        self.runner: Optional[Runner] = None
        # (location, leak messages) for every example that failed
        self.failures: List[Tuple[str, List[str]]] = []

    @property
    def armed(self) -> bool:
        return self.checker is not None

    def register(self, runner: Runner) -> None:
        self.runner = runner
        runner.register(START, self.start)
        runner.register(AFTER, self.after)

    def start(self) -> None:
        """Normalize the process environment and capture the first baseline."""
        if self.config.normalize_nss:
            normalize_name_service_lookups()
        self.checker = LeakChecker(self.config)
        logger.debug("Leak checker armed")

    def after(self, example: Any) -> bool:
        """
        Check for leaks left by the example that just finished.

        Args:
            example: Object with a description and, optionally, a
                source_location (file, line) and ignored_categories

        Returns:
            True when the example was clean

        Raises:
            RuntimeError: start() has not run yet
            LeakError: through the runner's protected block, when leaks were
                found and no runner is registered to contain it
        """
        if self.checker is None:
            raise RuntimeError("LeakCheckerAction.after() called before start()")

        if self.checker.check(example):
            return True

        ignored: FrozenSet[str] = frozenset(getattr(example, "ignored_categories", ()) or ())
        leaks = [record.message for record in self.checker.records if record.category not in ignored]
        if not leaks:
            return True

        location = example_location(example)
        self.failures.append((location, leaks))

        def raise_leak():
            raise LeakError(leaks, location)

        if self.runner is None:
            raise_leak()
        self.runner.protect(location, raise_leak)
        return False


@dataclass
class Example:
    """A plain callable run as one example by SimpleRunner."""

    description: str
    body: Callable[[], Any]
    source_location: Optional[Tuple[str, int]] = None
    ignored_categories: FrozenSet[str] = frozenset()

    def __post_init__(self):
        code = getattr(self.body, "__code__", None)
        if self.source_location is None and code is not None:
            self.source_location = (code.co_filename, code.co_firstlineno)

    def run(self) -> Any:
        return self.body()


@dataclass
class SimpleRunner:
    """
    Minimal serial runner implementing the Runner protocol.

    Examples run one after another; failures of an example or of an
    "after" handler are recorded in failures and the run continues.
    """

    handlers: Dict[str, List[Callable]] = field(default_factory=lambda: defaultdict(list))
    failures: List[Tuple[str, BaseException]] = field(default_factory=list)

    def register(self, event: str, handler: Callable) -> None:
        self.handlers[event].append(handler)

    def protect(self, location: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception as e:
            logger.debug(f"Failure recorded for {location.splitlines()[0]}: {e}")
            self.failures.append((location, e))
            return None

    def run(self, examples: Iterable[Example]) -> bool:
        """
        Run every example, firing start once and after for each example.

        Returns:
            True when no failure was recorded
        """
        for handler in self.handlers[START]:
            handler()
        for example in examples:
            self.protect(example_location(example), example.run)
            for handler in self.handlers[AFTER]:
                handler(example)
        return not self.failures
