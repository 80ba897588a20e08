"""Pathfinder 2e rules: modifier stacking, variant rules and character calculation."""

from .calculator import CharacterCalculationResult, CharacterCalculator
from .enums import ModifierTarget, ModifierType, VariantRuleType
from .modifiers import CalculatedCharacterStats, ModifierEngine, ModifierSpec, base_stats_for
from .variants import RuleModuleRegistry

__all__ = [
    "CharacterCalculationResult",
    "CharacterCalculator",
    "CalculatedCharacterStats",
    "ModifierEngine",
    "ModifierSpec",
    "ModifierTarget",
    "ModifierType",
    "RuleModuleRegistry",
    "VariantRuleType",
    "base_stats_for",
]
