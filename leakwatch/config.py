"""
Configuration for the leak checker.

Values come from LEAKWATCH_* environment variables, with a local .env file
supplying defaults (read, never loaded into os.environ), and the pytest plugin overrides them with command line and
ini options. Process-wide flags and default encodings are read through
injectable providers so tests can feed the checker a controlled view.
"""
import gc
import locale
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Any, Callable, FrozenSet, Iterable, NamedTuple, Optional

from dotenv import dotenv_values, find_dotenv

from .errors import CategoryError

CATEGORIES = (
    "fds",
    "tempfiles",
    "threads",
    "subprocesses",
    "environment",
    "argv",
    "globals",
    "encodings",
    "tracing",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class GlobalFlags(NamedTuple):
    """Process-wide verbosity and debug switches."""

    verbose: Any
    debug: Any


class Encodings(NamedTuple):
    """Default internal and external text encodings."""

    internal: Optional[str]
    external: Optional[str]


def default_global_flags() -> GlobalFlags:
    """logging.disable() threshold for verbosity, garbage collector debug bits for debug."""
    return GlobalFlags(
        verbose=logging.root.manager.disable,
        debug=gc.get_debug(),
    )


def default_encodings() -> Encodings:
    return Encodings(
        internal=sys.getdefaultencoding(),
        external=locale.getpreferredencoding(False),
    )


def parse_bool(value: Optional[str], default: bool) -> bool:
    """
    Parse an on/off environment value.

    Args:
        value: Raw value, None when the variable is unset
        default: Returned for None

    Returns:
        Parsed boolean
    """
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean value: {value!r}")


def parse_categories(value: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Turn 'fds, threads' or an iterable of names into a validated set."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    names = frozenset(name.strip() for name in value if name and name.strip())
    unknown = names - set(CATEGORIES)
    if unknown:
        raise CategoryError(f"Unknown leak categories: {', '.join(sorted(unknown))}")
    return names


@dataclass(frozen=True)
class LeakCheckConfig:
    """Settings shared by the checker, the action and the pytest plugin."""

    enabled: bool = False
    skip: FrozenSet[str] = frozenset()
    blocking_reap: bool = False
    normalize_nss: bool = True
    gc_on_leak: bool = True
    log_level: str = "WARNING"
    flags_provider: Callable[[], GlobalFlags] = field(default=default_global_flags, compare=False)
    encodings_provider: Callable[[], Encodings] = field(default=default_encodings, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "skip", parse_categories(self.skip))

    def checks(self, category: str) -> bool:
        """True when the category is captured and diffed."""
        if category not in CATEGORIES:
            raise CategoryError(f"Unknown leak category: {category}")
        return category not in self.skip

    def with_overrides(self, **changes) -> "LeakCheckConfig":
        changes = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ=None, dotenv: bool = True) -> "LeakCheckConfig":
        """
        Build a configuration from LEAKWATCH_* variables.

        Args:
            environ: Mapping to read instead of os.environ
            dotenv: Read LEAKWATCH_* defaults from a .env file as well; the
                file is never loaded into os.environ

        Returns:
            Parsed configuration
        """
        if environ is None:
            env = {}
            if dotenv:
                # the project .env of the working directory, not of this package
                path = find_dotenv(usecwd=True)
                if path:
                    env.update((key, value) for key, value in dotenv_values(path).items() if value is not None)
            env.update(os.environ)
        else:
            env = environ
        return cls(
            enabled=parse_bool(env.get("LEAKWATCH_ENABLED"), False),
            skip=parse_categories(env.get("LEAKWATCH_SKIP")),
            blocking_reap=parse_bool(env.get("LEAKWATCH_BLOCKING_REAP"), False),
            normalize_nss=parse_bool(env.get("LEAKWATCH_NORMALIZE_NSS"), True),
            gc_on_leak=parse_bool(env.get("LEAKWATCH_GC_ON_LEAK"), True),
            log_level=env.get("LEAKWATCH_LOG_LEVEL", "WARNING").upper(),
        )


def configure_logging(level: str = "WARNING", attach_handler: bool = True) -> logging.Logger:
    """
    Set the package log level and attach a stderr handler once.

    Leak reports are written at WARNING. Under pytest no handler is attached:
    records propagate to the root logger and land in the captured log of
    the failing test.
    """
    logger = logging.getLogger("leakwatch")
    logger.setLevel(level)
    if attach_handler and not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[leakwatch] %(message)s"))
        logger.addHandler(handler)
    return logger
