"""
Descriptor ownership lookup for leaked file descriptors.

I/O objects opened through tracked_open() (or handed to register_io()) are
kept in a weak registry. When the checker finds a new descriptor it asks
which live registered objects sit on it. Descriptors no registered object
owns fall back to what the OS reports about them through psutil.
"""
import logging
from typing import Any, Dict, List, NamedTuple, Optional

import psutil

from .registry import ObjectRegistry

logger = logging.getLogger(__name__)

_io_objects: ObjectRegistry = ObjectRegistry("io")


class IOEntry(NamedTuple):
    """One live I/O object sitting on a descriptor."""

    identity: int
    autoclose: bool
    description: str


def register_io(obj: Any, autoclose: Optional[bool] = None) -> Any:
    """
    Track an I/O object for leak reports.

    Args:
        obj: Anything with fileno(): file objects, sockets, selectors
        autoclose: Whether closing obj closes its descriptor; derived from
            closefd when omitted

    Returns:
        obj, so calls can be chained
    """
    return _io_objects.register(obj, autoclose)


def unregister_io(obj: Any) -> None:
    _io_objects.discard(obj)


def tracked_open(file, mode: str = "r", *args, **kwargs):
    """open() whose result is registered for leak reports."""
    return register_io(open(file, mode, *args, **kwargs))


def tracked_objects() -> List[Any]:
    return _io_objects.objects()


def _autoclose(obj: Any) -> bool:
    # TextIOWrapper -> BufferedReader -> FileIO carries closefd
    target = obj
    for _ in range(3):
        closefd = getattr(target, "closefd", None)
        if closefd is not None:
            return bool(closefd)
        inner = getattr(target, "buffer", None) or getattr(target, "raw", None)
        if inner is None or inner is target:
            break
        target = inner
    return True


def descriptor_owners() -> Dict[int, List[IOEntry]]:
    """Map each descriptor to the registered objects currently using it."""
    owners: Dict[int, List[IOEntry]] = {}
    for obj, autoclose in _io_objects.items():
        description = repr(obj)
        try:
            fd = obj.fileno()
        except (OSError, ValueError):
            # closed object
            continue
        if fd is None or fd < 0:
            continue
        if autoclose is None:
            autoclose = _autoclose(obj)
        owners.setdefault(fd, []).append(IOEntry(id(obj), autoclose, description))
    return owners


def _format_address(address: Any) -> str:
    if not address:
        return ""
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


def describe_os_descriptors(process: Optional[psutil.Process] = None) -> Dict[int, str]:
    """
    Ask the OS what each descriptor of this process points at.

    Only regular files and sockets are known to psutil; anything else is
    simply missing from the result.

    Returns:
        Dict of fd -> short description
    """
    descriptions: Dict[int, str] = {}
    try:
        process = process or psutil.Process()
    except psutil.Error:
        return descriptions

    try:
        for open_file in process.open_files():
            if open_file.fd is not None and open_file.fd >= 0:
                descriptions[open_file.fd] = open_file.path
    except (psutil.Error, NotImplementedError) as e:
        logger.debug(f"open_files() unavailable: {e}")

    try:
        for conn in process.net_connections(kind="all"):
            if conn.fd is None or conn.fd < 0:
                continue
            local = _format_address(conn.laddr)
            remote = _format_address(conn.raddr)
            text = f"socket {local}"
            if remote:
                text += f" -> {remote}"
            if conn.status and conn.status != psutil.CONN_NONE:
                text += f" ({conn.status})"
            descriptions[conn.fd] = text
    except (psutil.Error, NotImplementedError) as e:
        logger.debug(f"net_connections() unavailable: {e}")

    return descriptions
