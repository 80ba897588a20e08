"""Tests for the dice rolling engine."""

import random

import pytest

from pathkeeper.game.dice import DegreeOfSuccess, DiceRoller, RollType, degree_of_success, roll


class TestDiceRoller:
    """Test suite for DiceRoller class."""

    def setup_method(self):
        self.roller = DiceRoller()
        # Seed for reproducible tests
        self.roller.seed(42)

    def fixed(self, value: int) -> DiceRoller:
        roller = DiceRoller(rng=random.Random())
        roller.rng.randint = lambda a, b: value
        return roller

    def test_simple_roll(self):
        result = self.roller.roll("1d20")
        assert result.notation == "1d20"
        assert len(result.rolls) == 1
        assert 1 <= result.total <= 20

    def test_multiple_dice(self):
        result = self.roller.roll("3d6")
        assert len(result.rolls) == 3
        assert 3 <= result.total <= 18

    def test_modifiers(self):
        plus = self.roller.roll("1d20+5")
        minus = self.roller.roll("1d20-3")
        assert plus.total == plus.kept[0] + 5
        assert minus.modifier == -3
        assert minus.total == minus.kept[0] - 3

    def test_die_count_defaults_to_one(self):
        assert self.roller.parse_notation("d8").count == 1

    def test_fortune(self):
        """Fortune rolls twice and keeps the higher die."""
        result = self.roller.roll("1d20+2 fortune")
        assert result.roll_type == RollType.FORTUNE
        assert len(result.rolls) == 2
        assert result.kept[0] == max(result.rolls)
        assert result.natural_roll == result.kept[0]

    def test_misfortune(self):
        result = self.roller.roll("1d20 misfortune")
        assert result.roll_type == RollType.MISFORTUNE
        assert result.kept[0] == min(result.rolls)

    def test_drop_lowest(self):
        result = self.roller.roll("4d6 drop lowest")
        assert result.roll_type == RollType.DROP_LOWEST
        assert len(result.kept) == 3
        assert result.dropped[0] == min(result.rolls)
        assert result.total == sum(result.kept)

    def test_keep_highest(self):
        result = self.roller.roll("4d6 keep highest 3")
        assert result.roll_type == RollType.KEEP_HIGHEST
        assert len(result.kept) == 3
        assert len(result.dropped) == 1

    def test_natural_twenty(self):
        result = self.fixed(20).roll("1d20")
        assert result.natural_roll == 20
        assert result.is_natural_20 is True
        assert result.is_natural_1 is False

    def test_natural_one(self):
        result = self.fixed(1).roll("1d20")
        assert result.is_natural_1 is True

    def test_no_natural_roll_for_other_dice(self):
        assert self.roller.roll("2d20").natural_roll is None
        assert self.roller.roll("1d8").natural_roll is None

    def test_invalid_notation(self):
        for notation in ("invalid", "d", "abc123", "1d1", "101d6"):
            with pytest.raises(ValueError):
                self.roller.roll(notation)

    def test_case_insensitive(self):
        assert self.roller.roll("1D20 FORTUNE").roll_type == RollType.FORTUNE

    def test_to_dict(self):
        data = self.fixed(4).roll("2d6+1").to_dict()
        assert data["total"] == 9
        assert data["roll_type"] == "normal"
        assert data["text"] == "2d6+1: [4, 4] +1 = 9"

    def test_quick_roll(self):
        assert 2 <= roll("2d4").total <= 8


class TestDegreeOfSuccess:
    """Checks against a DC use the four degrees of success."""

    def test_thresholds(self):
        assert degree_of_success(25, 15) == DegreeOfSuccess.CRITICAL_SUCCESS
        assert degree_of_success(15, 15) == DegreeOfSuccess.SUCCESS
        assert degree_of_success(14, 15) == DegreeOfSuccess.FAILURE
        assert degree_of_success(5, 15) == DegreeOfSuccess.CRITICAL_FAILURE

    def test_natural_twenty_improves_one_step(self):
        assert degree_of_success(14, 15, natural_roll=20) == DegreeOfSuccess.SUCCESS
        assert degree_of_success(30, 15, natural_roll=20) == DegreeOfSuccess.CRITICAL_SUCCESS

    def test_natural_one_worsens_one_step(self):
        assert degree_of_success(16, 15, natural_roll=1) == DegreeOfSuccess.FAILURE

    def test_check(self):
        result = DiceRoller(rng=random.Random(3)).check(modifier=10, dc=15)
        assert result.roll.total == result.roll.natural_roll + 10
        assert result.succeeded == (result.degree in (DegreeOfSuccess.SUCCESS, DegreeOfSuccess.CRITICAL_SUCCESS))
        assert result.to_dict()["dc"] == 15
