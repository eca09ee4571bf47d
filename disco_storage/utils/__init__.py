"""Helpers shared by the storage workers: environment parsing, size formatting and TIMING logs."""

from disco_storage.utils.timing import async_timing_context
from disco_storage.utils.timing import log_timing
from disco_storage.utils_core import env
from disco_storage.utils_core import format_size
from disco_storage.utils_core import to_bool


__all__ = [
    "async_timing_context",
    "env",
    "format_size",
    "log_timing",
    "to_bool",
]
