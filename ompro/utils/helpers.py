"""Shared utility functions.

parse_dmy_date:   DD/MM/YYYY → date (None on bad input)
format_dmy_date:  date → DD/MM/YYYY
"""
from datetime import date, datetime

DMY_FORMAT = "%d/%m/%Y"


def parse_dmy_date(value):
    """Parse a DD/MM/YYYY string to a date object.

    Returns None for empty/invalid input. Date objects pass through.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), DMY_FORMAT).date()
    except (ValueError, TypeError):
        return None


def format_dmy_date(value) -> str:
    """Render a date/datetime as DD/MM/YYYY."""
    return value.strftime(DMY_FORMAT)
