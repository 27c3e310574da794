"""
Tests for the runner lifecycle integration.
"""
import threading
from unittest.mock import patch

import pytest

from leakwatch.action import AFTER, START, Example, LeakCheckerAction, SimpleRunner, example_location
from leakwatch.errors import LeakError


@pytest.fixture
def action(config):
    return LeakCheckerAction(config)


class TestLeakCheckerAction:
    """Test the start/after lifecycle."""

    def test_after_before_start_is_an_error(self, action):
        with pytest.raises(RuntimeError, match="before start"):
            action.after(Example("too early", lambda: None))

    def test_register_adds_both_handlers(self, action):
        runner = SimpleRunner()
        action.register(runner)
        assert runner.handlers[START] == [action.start]
        assert runner.handlers[AFTER] == [action.after]
        assert action.runner is runner

    def test_start_normalizes_nss_when_configured(self, config):
        action = LeakCheckerAction(config.with_overrides(normalize_nss=True))
        with patch("leakwatch.action.normalize_name_service_lookups") as normalize:
            action.start()
        normalize.assert_called_once_with()
        assert action.armed

    def test_start_skips_nss_when_disabled(self, action):
        with patch("leakwatch.action.normalize_name_service_lookups") as normalize:
            action.start()
        normalize.assert_not_called()

    def test_clean_example(self, action):
        action.start()
        assert action.after(Example("clean", lambda: None)) is True
        assert action.failures == []

    def test_leak_without_runner_raises(self, action, monkeypatch):
        monkeypatch.delenv("LEAKWATCH_TEST_FOO", raising=False)
        action.start()
        monkeypatch.setenv("LEAKWATCH_TEST_FOO", "bar")

        with pytest.raises(LeakError) as excinfo:
            action.after(Example("leaky", lambda: None))
        assert excinfo.value.leaks == ["Environment variable changed: 'LEAKWATCH_TEST_FOO' added: 'bar'"]
        assert excinfo.value.location.startswith("leaky\n")

    def test_ignored_categories_filtered(self, action, monkeypatch):
        """Test that an example can exempt itself from some categories."""
        monkeypatch.delenv("LEAKWATCH_TEST_FOO", raising=False)
        action.start()
        monkeypatch.setenv("LEAKWATCH_TEST_FOO", "bar")

        example = Example("tolerated", lambda: None, ignored_categories=frozenset({"environment"}))
        assert action.after(example) is True
        assert action.failures == []

    def test_ignored_leak_is_still_rebaselined(self, action, monkeypatch):
        monkeypatch.delenv("LEAKWATCH_TEST_FOO", raising=False)
        action.start()
        monkeypatch.setenv("LEAKWATCH_TEST_FOO", "bar")
        action.after(Example("tolerated", lambda: None, ignored_categories=frozenset({"environment"})))

        assert action.after(Example("next", lambda: None)) is True


class TestSimpleRunner:
    """Test leak reporting through a runner."""

    def test_leak_recorded_and_run_continues(self, config, monkeypatch):
        monkeypatch.delenv("LEAKWATCH_TEST_FOO", raising=False)
        runner = SimpleRunner()
        action = LeakCheckerAction(config)
        action.register(runner)
        ran = []

        def leaky():
            ran.append("leaky")
            monkeypatch.setenv("LEAKWATCH_TEST_FOO", "bar")

        def clean():
            ran.append("clean")

        assert runner.run([Example("leaky", leaky), Example("clean", clean)]) is False
        assert ran == ["leaky", "clean"]
        assert len(runner.failures) == 1

        location, error = runner.failures[0]
        assert isinstance(error, LeakError)
        description, source = location.split("\n")
        assert description == "leaky"
        assert source == f"{leaky.__code__.co_filename}:{leaky.__code__.co_firstlineno}"
        assert action.failures == [(location, error.leaks)]

    def test_example_failure_recorded(self, config):
        runner = SimpleRunner()
        LeakCheckerAction(config).register(runner)

        def broken():
            raise ValueError("boom")

        assert runner.run([Example("broken", broken)]) is False
        assert isinstance(runner.failures[0][1], ValueError)

    def test_leaked_thread_fails_only_its_example(self, config):
        runner = SimpleRunner()
        LeakCheckerAction(config).register(runner)
        stop = threading.Event()
        worker = threading.Thread(target=stop.wait)

        def clean():
            pass

        try:
            assert not runner.run([
                Example("clean first", clean),
                Example("starts thread", worker.start),
            ])
        finally:
            stop.set()
            worker.join()
        assert [location.split("\n")[0] for location, _ in runner.failures] == ["starts thread"]


class TestExampleLocation:
    """Test location strings."""

    def test_with_source(self):
        example = Example("desc", lambda: None, source_location=("suite/test_a.py", 12))
        assert example_location(example) == "desc\nsuite/test_a.py:12"

    def test_without_source(self):
        assert example_location("plain") == "plain"

    def test_builtin_body_has_no_source(self):
        assert Example("builtin", print).source_location is None
