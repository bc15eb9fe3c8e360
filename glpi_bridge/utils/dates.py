"""
Date parsing and formatting utilities for GLPI payloads
Accepts spreadsheet dates in several formats and renders GLPI's YYYY-MM-DD HH:MM:SS
"""
from datetime import date, datetime, timedelta, timezone


GLPI_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
GLPI_DATE_FORMAT = "%Y-%m-%d"

# Formats tried in order for plain strings
_INPUT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%m/%d/%y",
)


def parse_date(value):
    """
    Parse a date value from a spreadsheet or an API into a datetime.

    Args:
        value: datetime, date or string (ISO 8601, YYYY-MM-DD, dd/mm/yyyy, ...)

    Returns:
        datetime: Parsed value (naive, local time) or None if parsing fails

    Examples:
        >>> parse_date("2024-01-15")
        datetime.datetime(2024, 1, 15, 0, 0)

        >>> parse_date("15/01/2024 10:30")
        datetime.datetime(2024, 1, 15, 10, 30)

        >>> parse_date("not a date")
        None
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed
    except ValueError:
        pass

    for fmt in _INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def to_glpi_datetime(value):
    """
    Format a date value for GLPI datetime fields.

    Examples:
        >>> to_glpi_datetime("2024-01-15T10:30:00")
        "2024-01-15 10:30:00"

        >>> to_glpi_datetime(None)
        None
    """
    parsed = parse_date(value)
    return parsed.strftime(GLPI_DATETIME_FORMAT) if parsed else None


def to_glpi_date(value):
    """Format a date value for GLPI date-only fields (YYYY-MM-DD)."""
    parsed = parse_date(value)
    return parsed.strftime(GLPI_DATE_FORMAT) if parsed else None


def months_between(start, end, default=12):
    """
    Whole months between two dates (30-day months), at least 1.

    Args:
        start: Start date value
        end: End date value
        default: Returned when either date is missing or unparseable

    Examples:
        >>> months_between("2024-01-01", "2025-01-01")
        12

        >>> months_between("2024-01-01", None)
        12
    """
    start_dt = parse_date(start)
    end_dt = parse_date(end)
    if not start_dt or not end_dt:
        return default
    return max(1, round((end_dt - start_dt).days / 30))


def utc_now_iso():
    """Current UTC time as an ISO 8601 string (stored as lastSync)."""
    return datetime.now(timezone.utc).isoformat()


def lookback_start(last_sync, hours=24):
    """
    Start of the modification window for an incremental sync.

    Args:
        last_sync: ISO timestamp of the previous sync, or None
        hours: Look-back used when there is no previous sync

    Returns:
        datetime: Timezone-aware UTC datetime
    """
    if last_sync:
        parsed = datetime.fromisoformat(str(last_sync).replace('Z', '+00:00'))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return datetime.now(timezone.utc) - timedelta(hours=hours)
