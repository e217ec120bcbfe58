"""
Spatial helpers: hostility parsing, locale-name normalisation and matching,
coordinate adjacency and event-name detection.
"""

import re
from typing import List, Optional, Tuple, Union

FIRST_DISCOVERY_BONUS = 75

# Narrators like to name "places" after what happened there
EVENT_LOCALE_PATTERN = re.compile(
    r"\b(death|demise|battle|fight|skirmish|aftermath|ambush|massacre|"
    r"slaughter|funeral|wake|execution|duel|clash|fall)\s+(of|at|in|with)\b"
    r"|^(aftermath|battlefield|scene of)\b",
    re.IGNORECASE,
)

_ARTICLE = re.compile(r"^(the|a|an)\s+", re.IGNORECASE)
_PARENTHETICAL = re.compile(r"\s*\(.*?\)\s*")
_COORDS = re.compile(r"^(-?\d+)-(-?\d+)$")


def parse_hostility(value: Union[int, float, str, None]) -> int:
    """Map a zone danger rating ("High", "Safe", "12") to an integer bias."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value) if value == value else 0

    lower = str(value).strip().lower()
    if "high" in lower or "deadly" in lower:
        return 15
    if "low" in lower or "safe" in lower:
        return -10
    if "med" in lower or "neutral" in lower:
        return 0
    match = re.match(r"^[+-]?\d+", lower)
    return int(match.group(0)) if match else 0


def compute_hostility(
    rating: Union[int, str, None],
    first_discovery: bool = False,
    situational: Optional[List[int]] = None,
) -> int:
    """Zone rating plus additive attacker-side bonuses."""
    total = parse_hostility(rating)
    if first_discovery:
        total += FIRST_DISCOVERY_BONUS
    for bonus in situational or []:
        total += bonus
    return total


def normalize_locale(name: Optional[str]) -> str:
    text = (name or "").lower()
    text = _ARTICLE.sub("", text)
    text = _PARENTHETICAL.sub("", text)
    return text.split(":")[0].strip()


def is_locale_match(first: Optional[str], second: Optional[str]) -> bool:
    """
    Two names refer to the same place when their normalised forms are equal
    or one is a word-boundary prefix of the other ("The Bar" ~ "The Bar Table").
    """
    a = normalize_locale(first)
    b = normalize_locale(second)
    if not a or not b:
        return False
    if a == b:
        return True

    def _prefix(longer: str, shorter: str) -> bool:
        return longer.startswith(shorter) and (
            len(longer) == len(shorter) or longer[len(shorter)] in (" ", "(")
        )

    return _prefix(a, b) or _prefix(b, a)


def is_event_locale(name: Optional[str]) -> bool:
    """True for pseudo-locations named after events ("Aftermath of the Battle")."""
    return bool(name) and bool(EVENT_LOCALE_PATTERN.search(name.strip()))


def parse_coords(coords: Optional[str]) -> Optional[Tuple[int, int]]:
    match = _COORDS.match(coords or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def adjacent_coords(coords: str) -> List[str]:
    parsed = parse_coords(coords)
    if parsed is None:
        return []
    x, y = parsed
    return [f"{x}-{y - 1}", f"{x}-{y + 1}", f"{x - 1}-{y}", f"{x + 1}-{y}"]
