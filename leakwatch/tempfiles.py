"""
Tracked temporary files.

tracked_tempfile() is the single creation path for temp files the leak
checker knows about. Every call bumps a process-wide creation counter before
the file is registered, so a snapshot can tell cheaply whether any temp file
was created since the previous one and skip enumeration when none was.
"""
import logging
import os
import tempfile
from typing import Any, List, Optional

from .io_tracking import register_io, unregister_io
from .registry import Counter, ObjectRegistry

logger = logging.getLogger(__name__)

_created = Counter()
_live: ObjectRegistry = ObjectRegistry("tempfiles", weak=False)


class TrackedTempFile:
    """
    A named temporary file that stays registered until released.

    Attribute access falls through to the underlying file object, so it can
    be written to and read from like the result of NamedTemporaryFile.
    """

    def __init__(self, file):
        self._file = file
        self.path: Optional[str] = file.name

    def __getattr__(self, name: str) -> Any:
        return getattr(self._file, name)

    def fileno(self) -> int:
        return self._file.fileno()

    @property
    def closed(self) -> bool:
        return self._file.closed

    def close(self) -> None:
        """Close the handle; the file stays on disk until unlink()."""
        self._file.close()

    def unlink(self) -> None:
        """Remove the backing file and stop tracking this handle."""
        path, self.path = self.path, None
        _live.discard(self)
        unregister_io(self)
        if path is not None:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass

    def release(self) -> None:
        """Close and unlink; the handle is untracked even when close() fails."""
        try:
            self.close()
        finally:
            self.unlink()

    def __enter__(self) -> "TrackedTempFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        if self.path is None:
            return "<TrackedTempFile (released)>"
        return f"<TrackedTempFile:{self.path}>"


def tracked_tempfile(mode: str = "w+b", suffix: Optional[str] = None,
                     prefix: Optional[str] = None, dir: Optional[str] = None,
                     **kwargs) -> TrackedTempFile:
    """
    Create a temporary file the leak checker will watch.

    Args:
        mode: File mode, as for NamedTemporaryFile
        suffix: Optional file name suffix
        prefix: Optional file name prefix
        dir: Directory to create the file in
        **kwargs: Passed on to NamedTemporaryFile (encoding, newline, ...)

    Returns:
        Open TrackedTempFile; release() it or use it as a context manager
    """
    _created.increment()
    file = tempfile.NamedTemporaryFile(mode=mode, suffix=suffix, prefix=prefix,
                                       dir=dir, delete=False, **kwargs)
    handle = TrackedTempFile(file)
    _live.register(handle)
    register_io(handle, autoclose=True)
    return handle


def creation_count() -> int:
    return _created.value


def live_tempfiles() -> List[TrackedTempFile]:
    """Registered temp files that still have a backing path."""
    return [handle for handle in _live.objects() if handle.path]
