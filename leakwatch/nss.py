"""
Name-service lookup normalization for glibc.

NSS modules configured in /etc/nsswitch.conf (sssd, systemd, ldap, ...) are
loaded into every glibc process on the first user, group or host lookup and
tend to keep cache files or daemon sockets open. Those descriptors would be
reported as leaked by whichever test happened to trigger the first lookup.

normalize_name_service_lookups() pins every database to the built-in
"files" (and "dns" where relevant) services through glibc's
__nss_configure_lookup(). On anything that is not glibc it does nothing.
"""
import ctypes
import logging
from typing import Tuple

logger = logging.getLogger(__name__)

NSS_DATABASES: Tuple[Tuple[str, str], ...] = (
    ("passwd", "files"),
    ("shadow", "files"),
    ("group", "files"),
    ("hosts", "files dns"),
    ("services", "files"),
    ("netgroup", "files"),
    ("automount", "files"),
    ("aliases", "files"),
    ("ethers", "files"),
    ("gshadow", "files"),
    ("initgroups", "files"),
    ("networks", "files dns"),
    ("protocols", "files"),
    ("publickey", "files"),
    ("rpc", "files"),
)


def normalize_name_service_lookups() -> bool:
    """
    Override NSS configuration with files/dns only.

    Best-effort: any failure to load libc or find the function is logged at
    debug level and ignored.

    Returns:
        True when the override was applied
    """
    try:
        libc = ctypes.CDLL(None)
        configure_lookup = libc.__nss_configure_lookup
    except (OSError, AttributeError, TypeError) as e:
        logger.debug(f"NSS lookup override unavailable: {e}")
        return False

    configure_lookup.argtypes = [ctypes.c_char_p, ctypes.c_char_p]
    configure_lookup.restype = ctypes.c_int

    for database, services in NSS_DATABASES:
        result = configure_lookup(database.encode(), services.encode())
        if result != 0:
            logger.debug(f"__nss_configure_lookup({database!r}) returned {result}")
    return True
