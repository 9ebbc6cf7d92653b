"""Clock helpers.

Services accept a ``Clock`` callable so tests can pin "now" when checking
timestamps and rate-limit window expiry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)
