from __future__ import annotations

import datetime as dt

# Minutes since midnight, both ends inclusive.
TRADING_WINDOWS = (
    (9 * 60 + 30, 11 * 60 + 30),
    (13 * 60, 15 * 60),
)


def is_market_open(now: dt.datetime | None = None, tz: dt.tzinfo | None = None) -> bool:
    """Whether ``now`` falls inside a weekday trading window.

    Holidays are not known here; on those days the gate opens and the
    providers simply report no trading session.
    """
    if now is None:
        now = dt.datetime.now(tz) if tz is not None else dt.datetime.now()
    elif tz is not None and now.tzinfo is not None:
        now = now.astimezone(tz)

    if now.weekday() >= 5:
        return False
    minute = now.hour * 60 + now.minute
    return any(start <= minute <= end for start, end in TRADING_WINDOWS)
