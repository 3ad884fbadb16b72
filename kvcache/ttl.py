"""
kvcache — TTL Normalization

Memcached-style backends read any expiry above 30 days as an absolute Unix
timestamp rather than a number of seconds to live. normalize_ttl converts a
relative TTL so callers never have to know about that threshold.
"""

import time
from collections.abc import Callable

# 30 days in seconds
LONG_TTL_THRESHOLD = 2_592_000


def normalize_ttl(ttl: int, now: Callable[[], float] = time.time) -> int:
    """
    Convert a relative TTL into the form a timestamp-interpreting backend expects.

    Args:
        ttl: Time-to-live in seconds (0 = no expiry)
        now: Clock returning the current Unix time

    Returns:
        ttl unchanged when it is at most LONG_TTL_THRESHOLD,
        otherwise the absolute expiry timestamp now() + ttl
    """
    if ttl > LONG_TTL_THRESHOLD:
        return int(now()) + ttl
    return ttl
