"""Variant rule modules.

Each optional rule from the Gamemastery Guide is a :class:`RuleModule` that
hooks into the phases of a character calculation. Modules run in ascending
priority order, so rules that change ability scores go first.
"""

import logging
from typing import Any

from .character import CalculatedCharacter, FeatSlot, ValidationIssue
from .enums import IssueSeverity, VariantRuleType

logger = logging.getLogger(__name__)


class RuleModule:
    """Base class for a variant rule. Every hook is a no-op by default."""

    name: str = ""
    description: str = ""
    rule_type: VariantRuleType
    priority: int = 100

    def on_scores(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def on_proficiency(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def on_feats(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def on_slots(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def on_encumbrance(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def on_validation(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        pass

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "rule_type": self.rule_type.name,
            "priority": self.priority,
        }


def _tiered(level: int, thresholds: tuple[int, int, int]) -> int:
    """Return 3/2/1/0 for the first of (high, mid, low) thresholds reached."""
    high, mid, low = thresholds
    if level >= high:
        return 3
    if level >= mid:
        return 2
    if level >= low:
        return 1
    return 0


class AutomaticBonusProgressionModule(RuleModule):
    """Replaces fundamental runes with level-based potency bonuses."""

    name = "Automatic Bonus Progression"
    description = "Characters gain attack, defense and save potency from level instead of runes."
    rule_type = VariantRuleType.AUTOMATIC_BONUS_PROGRESSION
    priority = 100

    @staticmethod
    def attack_potency(level: int) -> int:
        return _tiered(level, (16, 10, 4))

    @staticmethod
    def armor_potency(level: int) -> int:
        return _tiered(level, (18, 11, 5))

    @staticmethod
    def resilient_bonus(level: int) -> int:
        return _tiered(level, (17, 11, 8))

    @staticmethod
    def striking_dice(level: int) -> int:
        return _tiered(level, (19, 12, 4))

    def on_proficiency(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        level = calculated.level
        calculated.potency = {
            "attack": self.attack_potency(level),
            "armor": self.armor_potency(level),
            "resilient": self.resilient_bonus(level),
            "striking": self.striking_dice(level),
        }
        calculated.proficiency_bonuses["ArmorPotency"] = calculated.potency["armor"]
        calculated.proficiency_bonuses["AttackPotency"] = calculated.potency["attack"]
        calculated.proficiency_bonuses["SavePotency"] = calculated.potency["resilient"]

    def on_validation(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        calculated.add_issue(
            IssueSeverity.INFO,
            "Automatic Bonus Progression is active. Fundamental runes are not needed.",
            category=self.name,
            data=dict(calculated.potency),
        )


class FreeArchetypeModule(RuleModule):
    """Grants an extra archetype feat at every even level."""

    name = "Free Archetype"
    description = "Gain an archetype feat at every even level that does not use a class feat."
    rule_type = VariantRuleType.FREE_ARCHETYPE
    priority = 200

    def on_slots(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        slots = calculated.feat_slots.setdefault("Archetype", [])
        chosen = {
            int(entry.get("level", 0)): entry.get("feat")
            for entry in character.get("archetype_feats", [])
        }
        existing = {slot.level for slot in slots}
        for level in range(2, calculated.level + 1, 2):
            if level not in existing:
                slots.append(
                    FeatSlot(
                        slot_type="Archetype",
                        level=level,
                        category=self.name,
                        selected_feat=chosen.get(level),
                        is_required=False,
                    )
                )

    def on_validation(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        selected = [s.selected_feat for s in calculated.feat_slots.get("Archetype", []) if s.selected_feat]
        for issue in self.validate_archetype_feats(selected):
            calculated.issues.append(issue)
        calculated.add_issue(
            IssueSeverity.INFO,
            "You gain archetype feats at even levels that don't count against your normal class feat progression",
            category=self.name,
        )

    @staticmethod
    def validate_archetype_feats(feats: list[str]) -> list[ValidationIssue]:
        """Check that each archetype's Dedication precedes its other feats.

        Args:
            feats: Selected archetype feats in level order, e.g.
                ``["Medic Dedication", "Medic: Doctor's Visitation"]``. Non-dedication
                feats are named ``"<Archetype>: <Feat>"`` or start with the
                archetype name.

        Returns:
            Error issues for archetypes missing a prior Dedication
        """
        issues = []
        dedicated: set[str] = set()
        reported: set[str] = set()
        for feat in feats:
            if feat.endswith("Dedication"):
                dedicated.add(feat[: -len("Dedication")].strip().lower())
                continue
            archetype = feat.split(":", 1)[0].strip() if ":" in feat else feat.split(" ", 1)[0]
            key = archetype.lower()
            if key not in dedicated and key not in reported:
                reported.add(key)
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        category="Free Archetype",
                        message=(
                            f"You must take the {archetype} Dedication feat before taking "
                            f"other {archetype} archetype feats"
                        ),
                        fix_action=f"AddFeat:{archetype} Dedication",
                    )
                )
        return issues


class IgnoreBulkLimitModule(RuleModule):
    """Characters never become encumbered."""

    name = "Ignore Bulk Limit"
    description = "Bulk is tracked but never causes the encumbered condition."
    rule_type = VariantRuleType.IGNORE_BULK_LIMIT
    priority = 50

    def on_encumbrance(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        calculated.ignore_bulk_limit = True
        calculated.is_encumbered = False

    def on_validation(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        calculated.add_issue(
            IssueSeverity.INFO,
            "Bulk limits are ignored for this campaign",
            category=self.name,
            data={"current_bulk": calculated.current_bulk, "bulk_limit": calculated.bulk_limit},
        )


class VoluntaryFlawsModule(RuleModule):
    """Extra ability flaws that grant extra boosts in pairs."""

    name = "Voluntary Flaws"
    description = "Take additional ability flaws; every two flaws grant an extra boost."
    rule_type = VariantRuleType.VOLUNTARY_FLAWS
    priority = 10

    @staticmethod
    def _flaws(character: dict[str, Any]) -> list[str]:
        return [str(f).lower() for f in character.get("voluntary_flaws", [])]

    def on_scores(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        flaws = self._flaws(character)
        for ability in flaws:
            if ability in calculated.ability_scores:
                calculated.ability_scores[ability] -= 2
        if flaws:
            calculated.recalculate_ability_modifiers()

    def on_validation(self, character: dict[str, Any], calculated: CalculatedCharacter) -> None:
        flaws = self._flaws(character)
        if not flaws:
            return

        counts: dict[str, int] = {}
        for ability in flaws:
            counts[ability] = counts.get(ability, 0) + 1

        for ability, count in counts.items():
            if calculated.ability_scores.get(ability, 10) < 8:
                calculated.add_issue(
                    IssueSeverity.ERROR,
                    f"{ability.title()} cannot be reduced below 8",
                    category=self.name,
                    fix_action=f"RemoveVoluntaryFlaw:{ability}",
                )
            if count % 2 != 0:
                calculated.add_issue(
                    IssueSeverity.WARNING,
                    f"Unpaired voluntary flaw in {ability.title()}. "
                    "Each pair of voluntary flaws grants one additional ability boost.",
                    category=self.name,
                    fix_action=f"AddVoluntaryFlaw:{ability}",
                )

        extra_boosts = len(flaws) // 2
        calculated.add_issue(
            IssueSeverity.INFO,
            f"Voluntary flaws grant {extra_boosts} additional ability boost(s)",
            category=self.name,
            data={"total_flaws": len(flaws), "additional_boosts": extra_boosts, "flaws": flaws},
        )


class RuleModuleRegistry:
    """Lookup of the available variant rule modules."""

    def __init__(self, modules: list[RuleModule] | None = None):
        if modules is None:
            modules = [
                AutomaticBonusProgressionModule(),
                FreeArchetypeModule(),
                IgnoreBulkLimitModule(),
                VoluntaryFlawsModule(),
            ]
        self._modules: dict[VariantRuleType, RuleModule] = {m.rule_type: m for m in modules}

    def register(self, module: RuleModule) -> None:
        self._modules[module.rule_type] = module
        logger.info(f"Registered rule module: {module.name}")

    def get_module(self, rule_type: VariantRuleType) -> RuleModule | None:
        return self._modules.get(rule_type)

    def list_modules(self) -> list[RuleModule]:
        return sorted(self._modules.values(), key=lambda m: m.priority)

    @staticmethod
    def parse_variant_rules(variant_rules: dict[str, Any] | None) -> dict[VariantRuleType, bool]:
        """Normalize a variant rule dict keyed by name or number.

        Keys may be enum names (``"FREE_ARCHETYPE"``), camel case names
        (``"FreeArchetype"``) or integer values. Unknown keys and non-boolean
        values are ignored.
        """
        parsed: dict[VariantRuleType, bool] = {}
        for key, enabled in (variant_rules or {}).items():
            if not isinstance(enabled, bool):
                continue
            rule_type = _lookup_variant(key)
            if rule_type is not None:
                parsed[rule_type] = enabled
        return parsed

    @staticmethod
    def unknown_variant_rules(variant_rules: dict[str, Any] | None) -> list[str]:
        """Keys of ``variant_rules`` that name no known variant rule."""
        return [str(key) for key in (variant_rules or {}) if _lookup_variant(key) is None]

    def get_active_modules(self, variant_rules: dict[str, Any] | None) -> list[RuleModule]:
        """Modules enabled in ``variant_rules``, ordered by priority."""
        enabled = self.parse_variant_rules(variant_rules)
        active = [self.get_module(rt) for rt, on in enabled.items() if on and rt in self._modules]
        return sorted(active, key=lambda m: m.priority)

    @staticmethod
    def validate_module_chain(modules: list[RuleModule]) -> list[ValidationIssue]:
        """Report modules that share a priority, since their order is undefined."""
        issues = []
        by_priority: dict[int, list[str]] = {}
        for module in modules:
            by_priority.setdefault(module.priority, []).append(module.name)
        for priority, names in sorted(by_priority.items()):
            if len(names) > 1:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.WARNING,
                        category="Rule Modules",
                        code="RULES.MODULE_CONFLICT",
                        message=f"Modules share priority {priority}: {', '.join(names)}",
                        data={"priority": priority, "modules": names},
                    )
                )
        return issues


def _lookup_variant(key: Any) -> VariantRuleType | None:
    if isinstance(key, int):
        try:
            return VariantRuleType(key)
        except ValueError:
            return None
    text = str(key).strip()
    if text.isdigit():
        return _lookup_variant(int(text))
    normalized = text.replace("_", "").replace(" ", "").lower()
    for rule_type in VariantRuleType:
        if rule_type.name.replace("_", "").lower() == normalized:
            return rule_type
    return None
