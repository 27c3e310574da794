"""
pytest plugin running the leak checker around every test.

Enable with --leakcheck, the ``leakcheck = true`` ini option or
LEAKWATCH_ENABLED=1. The baseline is captured once collection is done and
each test is checked after all of its fixtures were torn down. A leak is
raised as that test's teardown error, so the session keeps going. When a
fixture teardown already failed, that error is kept and the leak only shows
up in the session summary.
"""
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import pytest

from .action import AFTER, START, LeakCheckerAction
from .config import CATEGORIES, LeakCheckConfig, configure_logging, parse_categories
from .errors import LeakError

PLUGIN_NAME = "leakwatch-runner"


class PytestExample:
    """A collected test item seen as one example."""

    def __init__(self, item: pytest.Item):
        self.item = item
        self.description = item.nodeid
        path, lineno, _ = item.location
        self.source_location = (path, lineno + 1) if lineno is not None else None
        marker = item.get_closest_marker("leakcheck_skip")
        self.ignored_categories = parse_categories(marker.args) if marker else frozenset()


class PytestRunner:
    """Runner protocol on top of pytest hooks."""

    def __init__(self, action: Optional[LeakCheckerAction] = None):
        self.handlers: Dict[str, List[Callable]] = defaultdict(list)
        self.action = action

    def register(self, event: str, handler: Callable) -> None:
        self.handlers[event].append(handler)

    def protect(self, location: str, fn: Callable[[], Any]) -> Any:
        # pytest records anything raised here as the current test's teardown error
        return fn()

    @pytest.hookimpl(tryfirst=True)
    def pytest_runtestloop(self, session: pytest.Session) -> None:
        if session.config.option.collectonly:
            return
        for handler in self.handlers[START]:
            handler()

    @pytest.hookimpl(wrapper=True, trylast=True)
    def pytest_runtest_teardown(self, item: pytest.Item, nextitem: Optional[pytest.Item]):
        try:
            result = yield
        except Exception:
            # the teardown error is the one reported; the check still re-syncs
            # the baseline and a leak is listed in the session summary
            try:
                self._after(item)
            except LeakError:
                pass
            raise
        self._after(item)
        return result

    def _after(self, item: pytest.Item) -> None:
        example = PytestExample(item)
        for handler in self.handlers[AFTER]:
            handler(example)

    def pytest_terminal_summary(self, terminalreporter) -> None:
        failures = self.action.failures if self.action else []
        if not failures:
            return
        terminalreporter.section("resource leaks")
        for location, leaks in failures:
            terminalreporter.write_line(location.splitlines()[0])
            for leak in leaks:
                terminalreporter.write_line(f"    {leak}")


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("leakwatch", "resource leak checks")
    group.addoption(
        "--leakcheck",
        action="store_true",
        default=None,
        help="check every test for leaked descriptors, threads, processes and changed globals",
    )
    group.addoption(
        "--leakcheck-skip",
        action="store",
        default=None,
        metavar="CATEGORIES",
        help=f"comma separated categories not to check ({', '.join(CATEGORIES)})",
    )
    group.addoption(
        "--leakcheck-blocking-reap",
        action="store_true",
        default=None,
        help="wait for leaked child processes to exit instead of reporting them as running",
    )
    parser.addini("leakcheck", type="bool", default=False, help="enable resource leak checks")
    parser.addini("leakcheck_skip", default="", help="categories not to check")


def build_config(config: pytest.Config) -> LeakCheckConfig:
    """Environment settings overridden by ini values, overridden by options."""
    settings = LeakCheckConfig.from_env()
    enabled = bool(config.getoption("leakcheck")) or config.getini("leakcheck") or settings.enabled
    skip = config.getoption("leakcheck_skip") or config.getini("leakcheck_skip")
    return settings.with_overrides(
        enabled=enabled,
        skip=parse_categories(skip) if skip else None,
        blocking_reap=config.getoption("leakcheck_blocking_reap"),
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "leakcheck_skip(*categories): do not fail this test for leaks in the given categories",
    )
    settings = build_config(config)
    if not settings.enabled:
        return

    configure_logging(settings.log_level, attach_handler=False)
    action = LeakCheckerAction(settings)
    runner = PytestRunner(action)
    action.register(runner)
    config.pluginmanager.register(runner, PLUGIN_NAME)


def pytest_unconfigure(config: pytest.Config) -> None:
    runner = config.pluginmanager.get_plugin(PLUGIN_NAME)
    if runner is not None:
        config.pluginmanager.unregister(runner)


@pytest.fixture
def leak_checker(request: pytest.FixtureRequest) -> Optional[LeakCheckerAction]:
    """The active LeakCheckerAction, or None when leak checks are off."""
    runner = request.config.pluginmanager.get_plugin(PLUGIN_NAME)
    return runner.action if runner is not None else None
