"""
Helpers for the world clock string format ("July 26, 2024, 08:30")
"""

from datetime import datetime, timedelta
from typing import Optional

from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

GAME_TIME_FORMAT = "%B %d, %Y, %H:%M"


def parse_game_time(value: str) -> Optional[datetime]:
    """Parse a world clock string, returning None when it is not parseable."""
    try:
        return datetime.strptime((value or "").strip(), GAME_TIME_FORMAT)
    except ValueError:
        logger.debug(f"[Time] Could not parse game time: {value!r}")
        return None


def format_game_time(moment: datetime) -> str:
    # strftime pads the day, the world clock does not
    return f"{moment.strftime('%B')} {moment.day}, {moment.year}, {moment.strftime('%H:%M')}"


def advance_game_time(value: str, minutes: int) -> str:
    """Return the clock string moved forward by ``minutes``; unparseable input is returned as-is."""
    moment = parse_game_time(value)
    if moment is None or minutes <= 0:
        return value
    return format_game_time(moment + timedelta(minutes=minutes))


def get_time_period(value: str) -> str:
    moment = parse_game_time(value)
    if moment is None:
        return "Unknown"

    hour = moment.hour
    if hour == 0 and moment.minute == 0:
        return "Midnight"
    if 5 <= hour < 8:
        return "Dawn"
    if 8 <= hour < 12:
        return "Morning"
    if 12 <= hour < 14:
        return "Midday"
    if 14 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 20:
        return "Dusk"
    return "Night"
