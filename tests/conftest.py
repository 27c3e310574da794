"""
Shared fixtures for the leakwatch test suite.
"""
import gc

import pytest

from leakwatch.checker import LeakChecker
from leakwatch.config import Encodings, GlobalFlags, LeakCheckConfig

pytest_plugins = ["pytester"]


class FakeProcessState:
    """Mutable stand-in for process-wide flags and encodings."""

    def __init__(self):
        self.flags = GlobalFlags(verbose=False, debug=False)
        self.encodings = Encodings(internal=None, external="UTF-8")

    def get_flags(self) -> GlobalFlags:
        return self.flags

    def get_encodings(self) -> Encodings:
        return self.encodings


@pytest.fixture
def process_state():
    return FakeProcessState()


@pytest.fixture
def config(process_state):
    """Checker settings that never touch NSS and read fake flags/encodings."""
    return LeakCheckConfig(
        enabled=True,
        normalize_nss=False,
        flags_provider=process_state.get_flags,
        encodings_provider=process_state.get_encodings,
    )


@pytest.fixture
def make_checker(config):
    """Build a checker whose baseline is taken at call time."""
    def factory(**overrides) -> LeakChecker:
        gc.collect()
        return LeakChecker(config.with_overrides(**overrides) if overrides else config)
    return factory
