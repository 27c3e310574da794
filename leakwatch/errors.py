"""
Exception types raised by leakwatch.

Only LeakError is meant to reach the test runner: it carries the leak
messages of one example and where that example lives.
"""
from typing import List, Optional, Sequence


class LeakwatchError(Exception):
    """Base class for all leakwatch errors."""


class LeakError(LeakwatchError, AssertionError):
    """One or more resource categories diverged from the baseline."""

    def __init__(self, leaks: Sequence[str], location: Optional[str] = None):
        self.leaks: List[str] = list(leaks)
        self.location = location
        super().__init__("\n".join(self.leaks))


class CategoryError(LeakwatchError, ValueError):
    """Raised for a resource category name leakwatch does not know."""
