"""Tests for the modifier engine, calculator and variant rule modules."""

import pytest

from pathkeeper.core.errors import RulesErrors
from pathkeeper.rules.calculator import CharacterCalculator
from pathkeeper.rules.enums import IssueSeverity, ModifierTarget, ModifierType, ProficiencyRank, VariantRuleType
from pathkeeper.rules.modifiers import ModifierEngine, ModifierSpec, ability_modifier, base_stats_for
from pathkeeper.rules.progression import proficiency_bonus
from pathkeeper.rules.variants import (
    AutomaticBonusProgressionModule,
    FreeArchetypeModule,
    RuleModule,
    RuleModuleRegistry,
)

FIGHTER = {
    "id": 1,
    "name": "Valeros",
    "level": 1,
    "ability_scores": {
        "strength": 16,
        "dexterity": 14,
        "constitution": 12,
        "intelligence": 10,
        "wisdom": 10,
        "charisma": 8,
    },
}


def fighter(**changes):
    return {**FIGHTER, **changes}


class TestAbilityModifier:
    @pytest.mark.parametrize("score,expected", [(10, 0), (11, 0), (12, 1), (9, -1), (8, -1), (7, -2), (18, 4)])
    def test_floor_division(self, score, expected):
        assert ability_modifier(score) == expected

    def test_proficiency_bonus(self):
        assert proficiency_bonus(ProficiencyRank.UNTRAINED, 5) == 0
        assert proficiency_bonus(ProficiencyRank.EXPERT, 5) == 9
        assert proficiency_bonus(ProficiencyRank.EXPERT, 5, without_level=True) == 4


class TestModifierEngine:
    """Typed bonuses of the same type don't stack; untyped always do."""

    def setup_method(self):
        self.engine = ModifierEngine()
        self.base = base_stats_for(FIGHTER["ability_scores"])

    def test_same_type_keeps_highest(self):
        result = self.engine.calculate_stacked_modifier(
            [
                ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.ITEM),
                ModifierSpec(ModifierTarget.ARMOR_CLASS, 2, ModifierType.ITEM),
            ]
        )
        assert result.total_value == 2
        assert "Only the highest (+2) applies" in result.stacking_warnings[0]

    def test_penalties_keep_worst(self):
        result = self.engine.calculate_stacked_modifier(
            [
                ModifierSpec(ModifierTarget.ARMOR_CLASS, -1, ModifierType.STATUS),
                ModifierSpec(ModifierTarget.ARMOR_CLASS, -2, ModifierType.STATUS),
                ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.STATUS),
            ]
        )
        assert result.total_value == -1

    def test_untyped_and_different_types_stack(self):
        result = self.engine.calculate_stacked_modifier(
            [
                ModifierSpec(ModifierTarget.ATTACK_BONUS, 1),
                ModifierSpec(ModifierTarget.ATTACK_BONUS, 1),
                ModifierSpec(ModifierTarget.ATTACK_BONUS, 1, ModifierType.STATUS),
                ModifierSpec(ModifierTarget.ATTACK_BONUS, 2, ModifierType.ITEM),
            ]
        )
        assert result.total_value == 5
        assert result.stacking_warnings == []

    def test_inactive_modifiers_are_ignored(self):
        stats = self.engine.calculate_character_stats(
            1, self.base, [ModifierSpec(ModifierTarget.SPEED, 10, is_active=False)]
        )
        assert stats.get_final_value(ModifierTarget.SPEED) == 25

    def test_ability_change_propagates(self):
        stats = self.engine.calculate_character_stats(
            1,
            self.base,
            [ModifierSpec(ModifierTarget.DEXTERITY, 2, ModifierType.ENHANCEMENT, source_name="Bracers")],
        )
        assert stats.get_final_value(ModifierTarget.DEXTERITY) == 16
        assert stats.get_final_value(ModifierTarget.REFLEX_SAVE) == 3
        assert stats.get_final_value(ModifierTarget.INITIATIVE) == 3
        assert stats.get_final_value(ModifierTarget.STEALTH) == 3
        assert stats.get_final_value(ModifierTarget.ATHLETICS) == 3

    def test_target_without_base_starts_at_zero(self):
        stats = self.engine.calculate_character_stats(
            1, {}, [ModifierSpec(ModifierTarget.FIRE_RESISTANCE, 5, source_name="Ring")]
        )
        assert stats.get_final_value(ModifierTarget.FIRE_RESISTANCE) == 5

    def test_conflicts_and_breakdown(self):
        stats = self.engine.calculate_character_stats(
            1,
            self.base,
            [
                ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.ITEM, source_name="Shield"),
                ModifierSpec(
                    ModifierTarget.ARMOR_CLASS, 2, ModifierType.ITEM, condition="while raised", source_name="Bracers"
                ),
            ],
        )
        assert stats.has_warnings(ModifierTarget.ARMOR_CLASS)
        assert "Shield, Bracers" in stats.get_warnings(ModifierTarget.ARMOR_CLASS)[0]
        assert stats.get_modifier_breakdown(ModifierTarget.ARMOR_CLASS) == (
            "Shield: +1 [Item]\nBracers: +2 [Item] (while raised)"
        )
        assert stats.get_modifier_breakdown(ModifierTarget.SPEED) == "No modifiers"

    def test_api_response_keys(self):
        stats = self.engine.calculate_character_stats(1, self.base, [ModifierSpec(ModifierTarget.SPEED, 5)])
        data = stats.to_api_response()
        assert data["characterId"] == 1
        assert data["finalStats"]["SPEED"] == 30
        assert data["modifiers"]["SPEED"]["sources"][0]["sourceName"] == "Unknown"

    def test_display_name(self):
        spec = ModifierSpec(ModifierTarget.ARMOR_CLASS, 2, ModifierType.ITEM)
        assert spec.display_name == "+2 Armor Class (Item)"

    def test_can_stack_with(self):
        item = ModifierSpec(ModifierTarget.ARMOR_CLASS, 2, ModifierType.ITEM)
        assert not item.can_stack_with(ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.ITEM))
        assert item.can_stack_with(ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.STATUS))
        assert item.can_stack_with(ModifierSpec(ModifierTarget.SPEED, 1, ModifierType.ITEM))
        untyped = ModifierSpec(ModifierTarget.SPEED, 5)
        assert untyped.can_stack_with(ModifierSpec(ModifierTarget.SPEED, 5))

    def test_sources_are_recorded(self):
        stats = self.engine.calculate_character_stats(
            1, self.base, [ModifierSpec(ModifierTarget.SPEED, 5, source_id=7, source_name="Boots")]
        )
        sources = stats.get_modifier_sources(ModifierTarget.SPEED)
        assert [(s.source_id, s.source_name, s.value) for s in sources] == [(7, "Boots", 5)]
        assert stats.get_modifier_sources(ModifierTarget.STRENGTH) == []


class TestCharacterCalculator:
    def setup_method(self):
        self.calculator = CharacterCalculator()

    def test_base_statistics(self):
        calculated = self.calculator.calculate(fighter()).calculated
        assert calculated.armor_class == 15
        assert calculated.hit_points == 9
        assert calculated.fortitude_save == 4
        assert calculated.reflex_save == 5
        assert calculated.will_save == 3
        assert calculated.perception == 3
        assert calculated.attack_bonus == 6
        assert calculated.bulk_limit == 8
        assert calculated.is_valid

    def test_missing_scores_default_to_ten(self):
        calculated = self.calculator.calculate({"name": "Blank", "level": 1}).calculated
        assert calculated.ability_scores["charisma"] == 10
        assert calculated.armor_class == 13

    def test_encumbrance(self):
        calculated = self.calculator.calculate(fighter(current_bulk=9)).calculated
        assert calculated.is_encumbered

    def test_ignore_bulk_limit(self):
        calculated = self.calculator.calculate(fighter(current_bulk=20), {"IgnoreBulkLimit": True}).calculated
        assert not calculated.is_encumbered
        assert calculated.ignore_bulk_limit

    def test_proficiency_without_level(self):
        calculated = self.calculator.calculate(fighter(), {"ProficiencyWithoutLevel": True}).calculated
        assert calculated.armor_class == 14

    def test_automatic_bonus_progression(self):
        calculated = self.calculator.calculate(
            fighter(level=5), {"AutomaticBonusProgression": True}
        ).calculated
        assert calculated.potency == {"attack": 1, "armor": 1, "resilient": 0, "striking": 1}
        assert calculated.armor_class == 20
        assert calculated.attack_bonus == 11
        assert any(i.severity == IssueSeverity.INFO for i in calculated.issues)

    def test_free_archetype_slots(self):
        character = fighter(
            level=6,
            archetype_feats=[
                {"level": 2, "feat": "Medic Dedication"},
                {"level": 4, "feat": "Medic: Doctor's Visitation"},
            ],
        )
        calculated = self.calculator.calculate(character, {"FreeArchetype": True}).calculated
        slots = calculated.feat_slots["Archetype"]
        assert [s.level for s in slots] == [2, 4, 6]
        assert slots[0].selected_feat == "Medic Dedication"
        assert calculated.is_valid

    def test_free_archetype_requires_dedication(self):
        character = fighter(level=4, archetype_feats=[{"level": 2, "feat": "Sentinel: Steel Skin"}])
        calculated = self.calculator.calculate(character, {"FreeArchetype": True}).calculated
        assert not calculated.is_valid
        error = next(i for i in calculated.issues if i.severity == IssueSeverity.ERROR)
        assert error.fix_action == "AddFeat:Sentinel Dedication"

    def test_voluntary_flaws(self):
        calculated = self.calculator.calculate(
            fighter(voluntary_flaws=["strength"]), {"VoluntaryFlaws": True}
        ).calculated
        assert calculated.ability_scores["strength"] == 14
        assert calculated.ability_modifiers["strength"] == 2
        assert any(i.severity == IssueSeverity.WARNING for i in calculated.issues)

    def test_voluntary_flaws_floor(self):
        calculated = self.calculator.calculate(
            fighter(voluntary_flaws=["charisma", "charisma"]), {"VoluntaryFlaws": True}
        ).calculated
        assert calculated.ability_scores["charisma"] == 4
        assert not calculated.is_valid

    def test_failing_module_is_isolated(self):
        class BrokenModule(RuleModule):
            name = "Broken"
            rule_type = VariantRuleType.DUAL_CLASS
            priority = 5

            def on_feats(self, character, calculated):
                raise RuntimeError("boom")

        registry = RuleModuleRegistry()
        registry.register(BrokenModule())
        calculator = CharacterCalculator(registry=registry)

        calculated = calculator.calculate(fighter(), {"DualClass": True, "IgnoreBulkLimit": True}).calculated
        codes = [i.code for i in calculated.issues]
        assert RulesErrors.MODULE_FAILED in codes
        assert calculated.ignore_bulk_limit

    def test_calculate_with_modifiers(self):
        result = self.calculator.calculate_with_modifiers(
            fighter(), [ModifierSpec(ModifierTarget.ARMOR_CLASS, 1, ModifierType.ITEM, source_name="Ring")]
        )
        assert result.stats.get_final_value(ModifierTarget.ARMOR_CLASS) == 16
        assert "modifier_stats" in result.to_dict()


class TestRuleModuleRegistry:
    def test_parse_variant_rules(self):
        parsed = RuleModuleRegistry.parse_variant_rules(
            {"FreeArchetype": True, "2": True, "Bogus": True, "IgnoreBulkLimit": "yes"}
        )
        assert parsed == {
            VariantRuleType.FREE_ARCHETYPE: True,
            VariantRuleType.AUTOMATIC_BONUS_PROGRESSION: True,
        }

    def test_unknown_variant_rules(self):
        assert RuleModuleRegistry.unknown_variant_rules({"FREE_ARCHETYPE": True, "Bogus": True}) == ["Bogus"]

    def test_active_modules_by_priority(self):
        modules = RuleModuleRegistry().get_active_modules(
            {"FreeArchetype": True, "VoluntaryFlaws": True, "AutomaticBonusProgression": True}
        )
        assert [m.name for m in modules] == ["Voluntary Flaws", "Automatic Bonus Progression", "Free Archetype"]

    def test_disabled_rules_are_inactive(self):
        assert RuleModuleRegistry().get_active_modules({"FreeArchetype": False}) == []

    def test_module_chain_conflict(self):
        class Clash(AutomaticBonusProgressionModule):
            name = "Clash"

        issues = RuleModuleRegistry.validate_module_chain([AutomaticBonusProgressionModule(), Clash()])
        assert issues[0].code == "RULES.MODULE_CONFLICT"
        assert issues[0].data["priority"] == 100

    def test_potency_tables(self):
        assert AutomaticBonusProgressionModule.attack_potency(3) == 0
        assert AutomaticBonusProgressionModule.attack_potency(16) == 3
        assert AutomaticBonusProgressionModule.resilient_bonus(11) == 2

    def test_archetype_feats_check(self):
        issues = FreeArchetypeModule.validate_archetype_feats(["Medic: Treat Condition", "Medic: Other"])
        assert len(issues) == 1
