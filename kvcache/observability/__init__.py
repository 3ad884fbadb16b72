"""
kvcache — Observability Module

Logging setup for the package. Backends also expose counters through
get_stats().
"""

from .structured_logging import JSONFormatter, configure_logging

__all__ = [
    "JSONFormatter",
    "configure_logging",
]
