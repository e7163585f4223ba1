"""Tests for the level and streak rules."""

from datetime import date

import pytest

from app.services.xp_engine import (
    LEVELS,
    clamp_xp,
    level_of,
    level_rank,
    next_streak,
    xp_to_next_level,
)


class TestLevels:
    """Level thresholds are inclusive lower bounds."""

    @pytest.mark.parametrize(
        "xp,expected",
        [
            (0, "Explorer"),
            (499, "Explorer"),
            (500, "Learner"),
            (1499, "Learner"),
            (1500, "Scholar"),
            (3500, "Achiever"),
            (6999, "Achiever"),
            (7000, "Mastermind"),
            (12000, "Virtuoso"),
            (19999, "Virtuoso"),
            (20000, "Genius"),
            (1_000_000, "Genius"),
        ],
    )
    def test_level_of(self, xp, expected):
        assert level_of(xp) == expected

    def test_negative_xp_is_explorer(self):
        assert level_of(-50) == "Explorer"

    def test_levels_are_ordered(self):
        assert LEVELS[0] == "Explorer"
        assert LEVELS[-1] == "Genius"
        assert level_rank("Scholar") > level_rank("Learner")

    def test_unknown_level_rank(self):
        with pytest.raises(ValueError):
            level_rank("Wizard")

    def test_xp_to_next_level(self):
        assert xp_to_next_level(0) == ("Learner", 500)
        assert xp_to_next_level(1200) == ("Scholar", 300)
        assert xp_to_next_level(20000) == (None, 0)

    def test_clamp_xp(self):
        assert clamp_xp(-10) == 0
        assert clamp_xp(42) == 42


class TestStreak:
    """One qualifying activity applied to a streak."""

    def test_first_activity_starts_streak(self):
        update = next_streak(0, 0, None, date(2026, 3, 10))
        assert update.streak == 1
        assert update.longest_streak == 1
        assert update.last_activity_date == date(2026, 3, 10)
        assert update.changed is True

    def test_consecutive_day_extends_streak(self):
        update = next_streak(4, 6, date(2026, 3, 9), date(2026, 3, 10))
        assert update.streak == 5
        assert update.longest_streak == 6

    def test_extending_past_longest(self):
        update = next_streak(6, 6, date(2026, 3, 9), date(2026, 3, 10))
        assert update.streak == 7
        assert update.longest_streak == 7

    def test_same_day_is_idempotent(self):
        update = next_streak(3, 5, date(2026, 3, 10), date(2026, 3, 10))
        assert update.changed is False
        assert update.streak == 3
        assert update.longest_streak == 5

    def test_gap_resets_streak(self):
        update = next_streak(9, 9, date(2026, 3, 7), date(2026, 3, 10))
        assert update.streak == 1
        assert update.longest_streak == 9

    def test_month_boundary_counts_as_consecutive(self):
        update = next_streak(2, 2, date(2026, 2, 28), date(2026, 3, 1))
        assert update.streak == 3

    def test_future_last_activity_resets(self):
        update = next_streak(3, 3, date(2026, 3, 12), date(2026, 3, 10))
        assert update.streak == 1
        assert update.longest_streak == 3
