"""Game mechanics module for dice and live combat."""

from .combat import Combatant, CombatantType, CombatState, CombatTracker
from .dice import DegreeOfSuccess, DiceResult, DiceRoller, roll

__all__ = [
    "Combatant",
    "CombatantType",
    "CombatState",
    "CombatTracker",
    "DegreeOfSuccess",
    "DiceResult",
    "DiceRoller",
    "roll",
]
