"""Duration parsing for configuration values.

Accepts human-readable durations (``"500ms"``, ``"30s"``, ``"2m"``, ``"1h30m"``,
``"1d"``), ISO-8601 durations (``"PT2M"``, ``"P1D"``) and plain numbers, which
are taken as seconds.
"""

import re
from typing import Union

_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}
_HUMAN_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_ISO_PATTERN = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)


class DurationParseError(ValueError):
    """Raised when a duration value cannot be parsed or is out of range."""

    pass


def parse_duration(value: Union[str, int, float], allow_zero: bool = False) -> float:
    """Convert a duration value to seconds.

    Args:
        value: Duration string or number of seconds
        allow_zero: Accept a zero duration (e.g. no retry backoff)

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the value is malformed, negative, or zero when
            zero is not allowed

    Examples:
        >>> parse_duration("2m")
        120.0
        >>> parse_duration("PT1H30M")
        5400.0
        >>> parse_duration("250ms")
        0.25
    """
    if isinstance(value, bool):
        raise DurationParseError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        if not text:
            raise DurationParseError("Duration string cannot be empty")
        if re.fullmatch(r"\d+(?:\.\d+)?", text):
            seconds = float(text)
        elif text.upper().startswith("P"):
            seconds = _parse_iso8601(text.upper())
        else:
            seconds = _parse_human(text.lower())

    if seconds < 0:
        raise DurationParseError(f"Duration cannot be negative: {value!r}")
    if seconds == 0 and not allow_zero:
        raise DurationParseError(f"Duration cannot be zero: {value!r}")
    return seconds


def _parse_iso8601(text: str) -> float:
    match = _ISO_PATTERN.match(text)
    if not match or text in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected e.g. 'PT30S', 'PT2M', 'P1D'"
        )
    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + float(seconds or 0)
    )


def _parse_human(text: str) -> float:
    compact = re.sub(r"\s+", "", text)
    parts = _HUMAN_PART.findall(compact)
    if not parts or "".join(num + unit for num, unit in parts) != compact:
        raise DurationParseError(
            f"Invalid duration: '{text}'. Use digits with ms, s, m, h or d (e.g. '30s', '1h30m')"
        )
    return sum(float(num) * _UNIT_SECONDS[unit] for num, unit in parts)


def validate_duration_range(
    seconds: float,
    min_seconds: float,
    max_seconds: float,
    label: str = "Duration",
) -> None:
    """Raise DurationParseError unless ``min_seconds <= seconds <= max_seconds``."""
    if seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {describe_seconds(seconds)}. Minimum is {describe_seconds(min_seconds)}."
        )
    if seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {describe_seconds(seconds)}. Maximum is {describe_seconds(max_seconds)}."
        )


def describe_seconds(seconds: float) -> str:
    """Human-readable rendering such as '2 minutes' or '1.5 seconds'."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds / size
            shown = f"{count:g}"
            return f"{shown} {unit}{'' if shown == '1' else 's'}"
    shown = f"{seconds:g}"
    return f"{shown} second{'' if shown == '1' else 's'}"
