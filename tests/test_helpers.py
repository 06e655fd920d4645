"""
Helper Function Tests
=====================
"""

from datetime import datetime, timedelta, timezone

import pytest

from iap.utils.helpers import as_utc, from_epoch_ms, to_epoch_ms


def test_from_epoch_ms_parses_decimal_string():
    assert from_epoch_ms("1000") == datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)


def test_from_epoch_ms_keeps_millisecond_precision():
    dt = from_epoch_ms("1767225600123")
    assert dt == datetime(2026, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)
    assert to_epoch_ms(dt) == 1767225600123


def test_from_epoch_ms_rejects_non_numeric():
    with pytest.raises(ValueError):
        from_epoch_ms("12ab")


def test_as_utc_converts_aware_datetimes():
    dt = datetime(2026, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(dt) == datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc)
    assert as_utc(dt).tzinfo == timezone.utc
