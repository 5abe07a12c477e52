"""Parse and render durations the way Go's ``time.Duration`` prints them.

Deployment configuration historically used Go duration strings
(``5s``, ``60m``, ``1h30m``), so both directions stay compatible.
"""

from __future__ import annotations

import re

_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def parse_duration(value: str | float | int) -> float:
    """Return *value* in seconds.

    Accepts bare numbers (seconds) and Go-style strings such as ``90s``,
    ``1h30m`` or ``250ms``.  Raises ValueError for anything else.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("empty duration")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _PART_RE.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None

    if seconds < 0:
        raise ValueError(f"negative duration: {value!r}")
    return seconds


def format_duration(seconds: float, resolution: float = 1.0) -> str:
    """Truncate *seconds* to *resolution* and render it like Go does.

    >>> format_duration(0.7)
    '0s'
    >>> format_duration(65.2)
    '1m5s'
    >>> format_duration(3600, resolution=60)
    '1h0m0s'
    """
    total = int(seconds // resolution * resolution)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
