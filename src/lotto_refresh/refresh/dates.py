"""Draw date parsing helpers."""
import re
from datetime import date, datetime

# Day-first formats used by the archive, plus ISO for re-imported exports
DATE_FORMATS = [
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%Y-%m-%d",
]

_NOISE = re.compile(r"[^\d/.\-]")


def parse_draw_date(date_str: str) -> date:
    """
    Parse a draw date string to a date object.

    Args:
        date_str: Date string such as ``16/07/2024`` or ``16.07.2024``

    Returns:
        date object

    Raises:
        ValueError: If no known format matches
    """
    cleaned = _NOISE.sub("", date_str or "")

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"Unable to parse date: {date_str}")
