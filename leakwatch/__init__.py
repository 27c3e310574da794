"""Resource leak checks between test examples."""

from .action import Example, LeakCheckerAction, Runner, SimpleRunner
from .checker import LeakChecker, LeakRecord
from .config import LeakCheckConfig, configure_logging
from .errors import LeakError, LeakwatchError
from .io_tracking import register_io, tracked_open, unregister_io
from .nss import normalize_name_service_lookups
from .snapshot import Snapshot, take_snapshot
from .tempfiles import TrackedTempFile, tracked_tempfile
from .threads import DetachedThread, attach_current_thread, detach_current_thread

__version__ = "0.1.0"

__all__ = [
    'DetachedThread',
    'Example',
    'LeakCheckConfig',
    'LeakChecker',
    'LeakCheckerAction',
    'LeakError',
    'LeakRecord',
    'LeakwatchError',
    'Runner',
    'SimpleRunner',
    'Snapshot',
    'TrackedTempFile',
    'attach_current_thread',
    'configure_logging',
    'detach_current_thread',
    'normalize_name_service_lookups',
    'register_io',
    'take_snapshot',
    'tracked_open',
    'tracked_tempfile',
    'unregister_io',
]
