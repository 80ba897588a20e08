"""Proficiency progression tables."""

from dataclasses import dataclass, field

from .enums import ProficiencyRank


@dataclass
class Progression:
    """Level-gated proficiency increases, e.g. a class's armor progression."""

    steps: list[tuple[int, ProficiencyRank]] = field(default_factory=list)

    def get_proficiency_at_level(self, level: int) -> ProficiencyRank:
        """Return the highest rank reached at or below ``level``."""
        rank = ProficiencyRank.UNTRAINED
        for step_level, step_rank in sorted(self.steps, key=lambda s: s[0]):
            if step_level > level:
                break
            rank = step_rank
        return rank


def proficiency_bonus(rank: ProficiencyRank, level: int, without_level: bool = False) -> int:
    """Proficiency bonus for a rank at a level.

    Args:
        rank: Proficiency rank
        level: Character level
        without_level: Proficiency Without Level variant rule

    Returns:
        0 when untrained, otherwise rank value plus level
    """
    if rank == ProficiencyRank.UNTRAINED:
        return 0
    if without_level:
        return int(rank)
    return int(rank) + level


# Common class progressions
DEFAULT_ARMOR_PROGRESSION = Progression([(1, ProficiencyRank.TRAINED), (13, ProficiencyRank.EXPERT)])
DEFAULT_PERCEPTION_PROGRESSION = Progression([(1, ProficiencyRank.TRAINED), (11, ProficiencyRank.EXPERT)])
DEFAULT_SAVE_PROGRESSION = Progression(
    [(1, ProficiencyRank.TRAINED), (9, ProficiencyRank.EXPERT), (17, ProficiencyRank.MASTER)]
)
DEFAULT_CLASS_DC_PROGRESSION = Progression([(1, ProficiencyRank.TRAINED), (11, ProficiencyRank.EXPERT)])
