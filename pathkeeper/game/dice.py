"""Dice rolling engine with notation support for Pathfinder 2e."""

import random
import re
from dataclasses import dataclass
from enum import Enum


class RollType(Enum):
    """Type of roll modification."""

    NORMAL = "normal"
    FORTUNE = "fortune"
    MISFORTUNE = "misfortune"
    DROP_LOWEST = "drop_lowest"
    DROP_HIGHEST = "drop_highest"
    KEEP_HIGHEST = "keep_highest"
    KEEP_LOWEST = "keep_lowest"


class DegreeOfSuccess(Enum):
    """Outcome of a check against a DC."""

    CRITICAL_FAILURE = 0
    FAILURE = 1
    SUCCESS = 2
    CRITICAL_SUCCESS = 3

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


@dataclass
class DiceResult:
    """Result of a dice roll with full details."""

    notation: str
    rolls: list[int]
    kept: list[int]
    dropped: list[int]
    modifier: int
    total: int
    roll_type: RollType = RollType.NORMAL
    is_natural_20: bool = False
    is_natural_1: bool = False
    natural_roll: int | None = None  # For d20 rolls, the unmodified result

    def __str__(self) -> str:
        """Human-readable representation of the roll."""
        parts = [f"{self.notation}:"]

        if self.dropped:
            all_rolls = f"[{', '.join(str(r) for r in self.rolls)}]"
            kept_rolls = f"kept [{', '.join(str(r) for r in self.kept)}]"
            parts.append(f"{all_rolls} {kept_rolls}")
        else:
            parts.append(f"[{', '.join(str(r) for r in self.kept)}]")

        if self.modifier != 0:
            sign = "+" if self.modifier > 0 else ""
            parts.append(f"{sign}{self.modifier}")

        parts.append(f"= {self.total}")

        if self.is_natural_20:
            parts.append("(Natural 20!)")
        elif self.is_natural_1:
            parts.append("(Natural 1)")

        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "notation": self.notation,
            "rolls": self.rolls,
            "kept": self.kept,
            "dropped": self.dropped,
            "modifier": self.modifier,
            "total": self.total,
            "roll_type": self.roll_type.value,
            "natural_roll": self.natural_roll,
            "is_natural_20": self.is_natural_20,
            "is_natural_1": self.is_natural_1,
            "text": str(self),
        }


@dataclass
class CheckResult:
    """A d20 check compared against a DC."""

    roll: DiceResult
    dc: int
    degree: DegreeOfSuccess

    @property
    def succeeded(self) -> bool:
        return self.degree in (DegreeOfSuccess.SUCCESS, DegreeOfSuccess.CRITICAL_SUCCESS)

    def to_dict(self) -> dict:
        return {"roll": self.roll.to_dict(), "dc": self.dc, "degree": self.degree.label}


@dataclass
class DicePool:
    """Represents a pool of dice to roll."""

    count: int
    sides: int
    modifier: int = 0
    roll_type: RollType = RollType.NORMAL
    drop_count: int = 0
    keep_count: int | None = None


class DiceRoller:
    """Dice rolling engine with notation parsing."""

    # Matches: 2d6, 1d20+5, 4d6-2, 1d20+7 fortune, 4d6 drop lowest, 2d20 keep highest
    DICE_PATTERN = re.compile(
        r"^(\d+)?d(\d+)"  # NdX (N is optional, defaults to 1)
        r"([+-]\d+)?"  # Optional modifier
        r"(?:\s+(fortune|misfortune))?"
        r"(?:\s+drop\s+(lowest|highest)(?:\s+(\d+))?)?"
        r"(?:\s+keep\s+(lowest|highest)(?:\s+(\d+))?)?"
        r"$",
        re.IGNORECASE,
    )

    MAX_DICE = 100
    MAX_SIDES = 1000

    def __init__(self, rng: random.Random | None = None):
        """Initialize the dice roller.

        Args:
            rng: Random number generator instance. Uses default if not provided.
        """
        self.rng = rng or random.Random()

    def seed(self, seed: int) -> None:
        """Seed the random number generator for reproducible rolls."""
        self.rng.seed(seed)

    def parse_notation(self, notation: str) -> DicePool:
        """Parse dice notation string into a DicePool.

        Args:
            notation: Dice notation string (e.g., "2d6+4", "1d20+5 fortune")

        Returns:
            DicePool with parsed parameters

        Raises:
            ValueError: If notation is invalid
        """
        notation = notation.strip().lower()
        match = self.DICE_PATTERN.match(notation)

        if not match:
            raise ValueError(f"Invalid dice notation: {notation}")

        count = int(match.group(1)) if match.group(1) else 1
        sides = int(match.group(2))
        modifier = int(match.group(3)) if match.group(3) else 0

        if count < 1 or count > self.MAX_DICE or sides < 2 or sides > self.MAX_SIDES:
            raise ValueError(f"Dice out of range: {notation}")

        roll_type = RollType.NORMAL
        drop_count = 0
        keep_count = None

        fortune = match.group(4)
        if fortune:
            roll_type = RollType.FORTUNE if fortune == "fortune" else RollType.MISFORTUNE

        drop_type = match.group(5)
        if drop_type:
            drop_count = int(match.group(6)) if match.group(6) else 1
            roll_type = RollType.DROP_LOWEST if drop_type == "lowest" else RollType.DROP_HIGHEST

        keep_type = match.group(7)
        if keep_type:
            keep_count = int(match.group(8)) if match.group(8) else 1
            roll_type = RollType.KEEP_HIGHEST if keep_type == "highest" else RollType.KEEP_LOWEST

        return DicePool(
            count=count,
            sides=sides,
            modifier=modifier,
            roll_type=roll_type,
            drop_count=drop_count,
            keep_count=keep_count,
        )

    def roll_pool(self, pool: DicePool) -> DiceResult:
        """Roll a dice pool and return the result."""
        # Fortune/misfortune: roll twice, keep best/worst
        if pool.roll_type in (RollType.FORTUNE, RollType.MISFORTUNE):
            rolls = [self.rng.randint(1, pool.sides) for _ in range(2)]
            if pool.roll_type == RollType.FORTUNE:
                kept, dropped = [max(rolls)], [min(rolls)]
            else:
                kept, dropped = [min(rolls)], [max(rolls)]
        else:
            rolls = [self.rng.randint(1, pool.sides) for _ in range(pool.count)]
            sorted_rolls = sorted(rolls)

            if pool.roll_type == RollType.DROP_LOWEST:
                dropped = sorted_rolls[: pool.drop_count]
                kept = sorted_rolls[pool.drop_count :]
            elif pool.roll_type == RollType.DROP_HIGHEST:
                dropped = sorted_rolls[-pool.drop_count :] if pool.drop_count else []
                kept = sorted_rolls[: -pool.drop_count] if pool.drop_count else sorted_rolls
            elif pool.roll_type == RollType.KEEP_HIGHEST and pool.keep_count:
                kept = sorted_rolls[-pool.keep_count :]
                dropped = sorted_rolls[: -pool.keep_count] if pool.keep_count < len(sorted_rolls) else []
            elif pool.roll_type == RollType.KEEP_LOWEST and pool.keep_count:
                kept = sorted_rolls[: pool.keep_count]
                dropped = sorted_rolls[pool.keep_count :]
            else:
                kept = rolls
                dropped = []

        total = sum(kept) + pool.modifier

        natural_roll = None
        if pool.sides == 20 and len(kept) == 1:
            natural_roll = kept[0]

        notation = f"{pool.count}d{pool.sides}"
        if pool.modifier:
            notation += f"{pool.modifier:+d}"
        if pool.roll_type == RollType.FORTUNE:
            notation += " fortune"
        elif pool.roll_type == RollType.MISFORTUNE:
            notation += " misfortune"
        elif pool.roll_type == RollType.DROP_LOWEST:
            notation += f" drop lowest {pool.drop_count}"
        elif pool.roll_type == RollType.DROP_HIGHEST:
            notation += f" drop highest {pool.drop_count}"
        elif pool.roll_type == RollType.KEEP_HIGHEST and pool.keep_count:
            notation += f" keep highest {pool.keep_count}"
        elif pool.roll_type == RollType.KEEP_LOWEST and pool.keep_count:
            notation += f" keep lowest {pool.keep_count}"

        return DiceResult(
            notation=notation,
            rolls=rolls,
            kept=kept,
            dropped=dropped,
            modifier=pool.modifier,
            total=total,
            roll_type=pool.roll_type,
            is_natural_20=natural_roll == 20,
            is_natural_1=natural_roll == 1,
            natural_roll=natural_roll,
        )

    def roll(self, notation: str) -> DiceResult:
        """Parse and roll dice from notation string."""
        return self.roll_pool(self.parse_notation(notation))

    def roll_d20(self, modifier: int = 0, roll_type: RollType = RollType.NORMAL) -> DiceResult:
        return self.roll_pool(DicePool(count=1, sides=20, modifier=modifier, roll_type=roll_type))

    def check(self, modifier: int, dc: int, roll_type: RollType = RollType.NORMAL) -> CheckResult:
        """Roll a d20 check against a DC.

        Args:
            modifier: Total check modifier
            dc: Difficulty class
            roll_type: Fortune or misfortune effects

        Returns:
            CheckResult with the degree of success
        """
        result = self.roll_d20(modifier, roll_type)
        return CheckResult(roll=result, dc=dc, degree=degree_of_success(result.total, dc, result.natural_roll))


def degree_of_success(total: int, dc: int, natural_roll: int | None = None) -> DegreeOfSuccess:
    """Degree of success for a check total against a DC.

    Beating the DC by 10 is a critical success and missing it by 10 a critical
    failure. A natural 20 improves the result one step; a natural 1 worsens it.
    """
    if total >= dc + 10:
        degree = DegreeOfSuccess.CRITICAL_SUCCESS
    elif total >= dc:
        degree = DegreeOfSuccess.SUCCESS
    elif total <= dc - 10:
        degree = DegreeOfSuccess.CRITICAL_FAILURE
    else:
        degree = DegreeOfSuccess.FAILURE

    if natural_roll == 20:
        degree = DegreeOfSuccess(min(degree.value + 1, DegreeOfSuccess.CRITICAL_SUCCESS.value))
    elif natural_roll == 1:
        degree = DegreeOfSuccess(max(degree.value - 1, DegreeOfSuccess.CRITICAL_FAILURE.value))
    return degree


# Convenience function for quick rolls
def roll(notation: str) -> DiceResult:
    """Quick roll function using default roller."""
    return DiceRoller().roll(notation)
