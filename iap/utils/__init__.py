"""
Utilities Module
================

Helper functions and utility classes.
"""

from iap.utils.helpers import as_utc, from_epoch_ms, to_epoch_ms, utc_now

__all__ = ["as_utc", "from_epoch_ms", "to_epoch_ms", "utc_now"]
