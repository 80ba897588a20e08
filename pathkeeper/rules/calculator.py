"""Character calculator: base statistics, variant rules and modifiers."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..core.errors import RulesErrors
from .character import ABILITY_NAMES, CalculatedCharacter
from .enums import IssueSeverity, ModifierTarget, ProficiencyRank, VariantRuleType
from .modifiers import (
    CalculatedCharacterStats,
    ModifierEngine,
    ModifierSpec,
    base_stats_for,
)
from .progression import (
    DEFAULT_ARMOR_PROGRESSION,
    DEFAULT_CLASS_DC_PROGRESSION,
    DEFAULT_PERCEPTION_PROGRESSION,
    DEFAULT_SAVE_PROGRESSION,
    proficiency_bonus,
)
from .variants import RuleModule, RuleModuleRegistry

logger = logging.getLogger(__name__)

# Hook phases in the order they run across all active modules
PHASES = ("on_scores", "on_proficiency", "on_feats", "on_slots", "on_encumbrance", "on_validation")


@dataclass
class CharacterCalculationResult:
    """Calculator output: variant rule results plus stacked modifiers."""

    calculated: CalculatedCharacter
    stats: CalculatedCharacterStats | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.calculated.to_dict()
        if self.stats is not None:
            data["modifier_stats"] = self.stats.to_api_response()
        return data


class CharacterCalculator:
    """Computes a character's derived statistics.

    Character data is a plain dict as stored on the Character model:
    ``id``, ``name``, ``level``, ``ability_scores``, and optional
    ``current_bulk``, ``voluntary_flaws`` and ``archetype_feats``.
    """

    def __init__(
        self,
        registry: RuleModuleRegistry | None = None,
        engine: ModifierEngine | None = None,
    ):
        self.registry = registry or RuleModuleRegistry()
        self.engine = engine or ModifierEngine()

    def calculate(
        self,
        character: dict[str, Any],
        variant_rules: dict[str, Any] | None = None,
    ) -> CharacterCalculationResult:
        """Run base calculation and every active variant rule module.

        Args:
            character: Character data dict
            variant_rules: Campaign variant rules, e.g. ``{"FreeArchetype": True}``

        Returns:
            CharacterCalculationResult with issues from every module
        """
        calculated = self._initialize(character)
        modules = self.registry.get_active_modules(variant_rules)
        without_level = bool(
            self.registry.parse_variant_rules(variant_rules).get(VariantRuleType.PROFICIENCY_WITHOUT_LEVEL)
        )

        calculated.issues.extend(self.registry.validate_module_chain(modules))
        failed: set[str] = set()

        for phase in PHASES:
            if phase == "on_encumbrance":
                self._derive(calculated, without_level)
            for module in modules:
                if module.name in failed:
                    continue
                self._run_hook(module, phase, character, calculated, failed)

        return CharacterCalculationResult(calculated=calculated)

    def calculate_with_modifiers(
        self,
        character: dict[str, Any],
        modifiers: Iterable[ModifierSpec],
        variant_rules: dict[str, Any] | None = None,
    ) -> CharacterCalculationResult:
        """Calculate and also stack the modifiers from custom items and effects."""
        result = self.calculate(character, variant_rules)
        calculated = result.calculated
        base = base_stats_for(calculated.ability_scores, calculated.level)
        base[ModifierTarget.ARMOR_CLASS] = calculated.armor_class
        base[ModifierTarget.HIT_POINTS] = calculated.hit_points
        base[ModifierTarget.INITIATIVE] = calculated.initiative
        base[ModifierTarget.PERCEPTION] = calculated.perception
        base[ModifierTarget.FORTITUDE_SAVE] = calculated.fortitude_save
        base[ModifierTarget.REFLEX_SAVE] = calculated.reflex_save
        base[ModifierTarget.WILL_SAVE] = calculated.will_save
        result.stats = self.engine.calculate_character_stats(calculated.character_id, base, modifiers)
        return result

    @staticmethod
    def _initialize(character: dict[str, Any]) -> CalculatedCharacter:
        calculated = CalculatedCharacter(
            character_id=character.get("id"),
            name=character.get("name", ""),
            level=int(character.get("level", 1)),
            ability_scores=ability_scores_from(character),
        )
        calculated.recalculate_ability_modifiers()
        calculated.current_bulk = int(character.get("current_bulk", 0))
        return calculated

    @staticmethod
    def _derive(calculated: CalculatedCharacter, without_level: bool) -> None:
        """Compute derived statistics from (possibly adjusted) ability scores."""
        mods = calculated.ability_modifiers
        level = calculated.level

        armor = proficiency_bonus(DEFAULT_ARMOR_PROGRESSION.get_proficiency_at_level(level), level, without_level)
        saves = proficiency_bonus(DEFAULT_SAVE_PROGRESSION.get_proficiency_at_level(level), level, without_level)
        perception = proficiency_bonus(
            DEFAULT_PERCEPTION_PROGRESSION.get_proficiency_at_level(level), level, without_level
        )
        class_dc = proficiency_bonus(
            DEFAULT_CLASS_DC_PROGRESSION.get_proficiency_at_level(level), level, without_level
        )
        trained = proficiency_bonus(ProficiencyRank.TRAINED, level, without_level)
        save_potency = calculated.proficiency_bonuses.get("SavePotency", 0)

        calculated.proficiency_bonuses.update(
            {"Armor": armor, "Saves": saves, "Perception": perception, "ClassDC": class_dc}
        )
        calculated.armor_class = 10 + mods["dexterity"] + armor + calculated.proficiency_bonuses.get("ArmorPotency", 0)
        calculated.hit_points = level * 8 + mods["constitution"] * level
        calculated.initiative = mods["dexterity"]
        calculated.perception = mods["wisdom"] + perception
        calculated.fortitude_save = mods["constitution"] + saves + save_potency
        calculated.reflex_save = mods["dexterity"] + saves + save_potency
        calculated.will_save = mods["wisdom"] + saves + save_potency
        calculated.class_dc = 10 + max(mods.values()) + class_dc
        calculated.attack_bonus = (
            max(mods["strength"], mods["dexterity"]) + trained + calculated.proficiency_bonuses.get("AttackPotency", 0)
        )
        calculated.bulk_limit = 5 + mods["strength"]
        calculated.is_encumbered = calculated.current_bulk > calculated.bulk_limit

    @staticmethod
    def _run_hook(
        module: RuleModule,
        phase: str,
        character: dict[str, Any],
        calculated: CalculatedCharacter,
        failed: set[str],
    ) -> None:
        hook: Callable[[dict[str, Any], CalculatedCharacter], None] = getattr(module, phase)
        try:
            hook(character, calculated)
        except Exception as e:
            logger.error(f"Rule module '{module.name}' failed during {phase}: {e}")
            failed.add(module.name)
            calculated.add_issue(
                IssueSeverity.ERROR,
                f"Rule module '{module.name}' failed: {e}",
                category="Rule Module",
                code=RulesErrors.MODULE_FAILED,
            )


def ability_scores_from(character: dict[str, Any]) -> dict[str, int]:
    """Stored ability scores with defaults filled in."""
    stored = character.get("ability_scores") or {}
    return {name: int(stored.get(name, 10)) for name in ABILITY_NAMES}

