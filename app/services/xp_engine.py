"""Level and streak rules.

Pure functions only; the database-bound operations that apply them live in
app.services.gamification. Both the server and the client-side student store
use these so the two can never disagree about a level or a streak.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from app.models.student import StreakUpdate

# (minimum xp, label), ascending
LEVEL_THRESHOLDS: list[tuple[int, str]] = [
    (0, "Explorer"),
    (500, "Learner"),
    (1500, "Scholar"),
    (3500, "Achiever"),
    (7000, "Mastermind"),
    (12000, "Virtuoso"),
    (20000, "Genius"),
]

LEVELS: list[str] = [label for _, label in LEVEL_THRESHOLDS]


def level_of(xp: int) -> str:
    """Return the level label for an XP total. Negative totals count as 0."""
    label = LEVEL_THRESHOLDS[0][1]
    for minimum, name in LEVEL_THRESHOLDS:
        if xp < minimum:
            break
        label = name
    return label


def level_rank(label: str) -> int:
    """Position of a label in the level ordering (Explorer = 0)."""
    try:
        return LEVELS.index(label)
    except ValueError:
        raise ValueError(f"Unknown level: {label}") from None


def xp_to_next_level(xp: int) -> tuple[str | None, int]:
    """Return (next level label, xp still needed); (None, 0) at the top level."""
    for minimum, name in LEVEL_THRESHOLDS:
        if xp < minimum:
            return name, minimum - max(xp, 0)
    return None, 0


def clamp_xp(xp: int) -> int:
    return max(0, xp)


def next_streak(
    streak: int,
    longest_streak: int,
    last_activity_date: date | None,
    today: date,
) -> StreakUpdate:
    """Apply one qualifying activity on ``today`` to a streak.

    Same day          → unchanged
    Previous day      → streak + 1
    Anything else     → 1 (first activity, a gap of two or more days, or a
                          last_activity_date after today)
    """
    if last_activity_date == today:
        return StreakUpdate(
            streak=streak,
            longest_streak=longest_streak,
            last_activity_date=today,
            changed=False,
        )

    if last_activity_date is not None and last_activity_date == today - timedelta(days=1):
        new_streak = streak + 1
    else:
        new_streak = 1

    return StreakUpdate(
        streak=new_streak,
        longest_streak=max(longest_streak, new_streak),
        last_activity_date=today,
    )


def today_in(timezone_name: str) -> date:
    """Current calendar date in the given IANA timezone."""
    return datetime.now(ZoneInfo(timezone_name)).date()
