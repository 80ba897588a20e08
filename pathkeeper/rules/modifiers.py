"""Modifier stacking engine for Pathfinder 2e character statistics.

Stacking rules:
    - Untyped modifiers always stack.
    - Typed modifiers of the same type do not stack: only the highest bonus
      and the worst penalty of that type apply.
    - Modifiers of different types stack with each other.

After modifiers are applied to base statistics, any change in an ability
modifier is propagated to the skills and saves keyed to that ability.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from .enums import (
    ABILITY_DEPENDENTS,
    ABILITY_KEYS,
    ABILITY_TARGETS,
    KEY_ABILITY,
    ModifierTarget,
    ModifierType,
)


def ability_modifier(score: int) -> int:
    """Ability modifier for a score (10-11 is +0, 12-13 is +1, 8-9 is -1)."""
    return (score - 10) // 2


def base_hit_points(level: int, constitution: int, hp_per_level: int = 8) -> int:
    """Base hit points before modifiers."""
    return max(1, (hp_per_level + ability_modifier(constitution)) * max(1, level))


def base_stats_for(ability_scores: dict[str, int] | None = None, level: int = 1) -> dict[ModifierTarget, int]:
    """Build base statistics from stored ability scores.

    Args:
        ability_scores: Mapping of ability name (``"strength"``...) to score.
            Missing abilities default to 10.
        level: Character level, used for hit points

    Returns:
        Base value for every ability, derived stat, save and skill
    """
    ability_scores = ability_scores or {}
    stats: dict[ModifierTarget, int] = {}

    for key, target in ABILITY_KEYS.items():
        stats[target] = int(ability_scores.get(key, 10))

    stats[ModifierTarget.ARMOR_CLASS] = 10
    stats[ModifierTarget.HIT_POINTS] = base_hit_points(level, stats[ModifierTarget.CONSTITUTION])
    stats[ModifierTarget.INITIATIVE] = ability_modifier(stats[ModifierTarget.DEXTERITY])
    stats[ModifierTarget.SPEED] = 25

    for target, ability in KEY_ABILITY.items():
        stats[target] = ability_modifier(stats[ability])

    return stats


@dataclass
class ModifierSpec:
    """A single modifier contributed by some source."""

    target: ModifierTarget
    value: int
    modifier_type: ModifierType = ModifierType.UNTYPED
    condition: str | None = None
    is_active: bool = True
    priority: int = 0
    source_id: int | None = None
    source_name: str | None = None

    @property
    def display_name(self) -> str:
        """e.g. ``+2 Strength (Enhancement)``."""
        sign = "+" if self.value >= 0 else ""
        text = f"{sign}{self.value} {self.target.label}"
        if self.modifier_type != ModifierType.UNTYPED:
            text += f" ({self.modifier_type.label})"
        return text

    def can_stack_with(self, other: "ModifierSpec") -> bool:
        """Check whether this modifier stacks with another one."""
        if self.target != other.target:
            return True
        if self.modifier_type == ModifierType.UNTYPED or other.modifier_type == ModifierType.UNTYPED:
            return True
        return self.modifier_type != other.modifier_type


@dataclass
class ModifierSource:
    """Where a modifier on a target came from."""

    source_id: int | None
    source_name: str
    value: int
    modifier_type: ModifierType
    condition: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "value": self.value,
            "type": self.modifier_type.label,
            "condition": self.condition,
        }


@dataclass
class ModifierResult:
    """Stacked total for one target."""

    total_value: int = 0
    stacking_warnings: list[str] = field(default_factory=list)


@dataclass
class CalculatedCharacterStats:
    """Base, modifier and final values for a character."""

    character_id: int | None
    base_stats: dict[ModifierTarget, int] = field(default_factory=dict)
    final_stats: dict[ModifierTarget, int] = field(default_factory=dict)
    modifiers: dict[ModifierTarget, ModifierResult] = field(default_factory=dict)
    modifier_sources: dict[ModifierTarget, list[ModifierSource]] = field(default_factory=dict)
    validation_warnings: dict[ModifierTarget, list[str]] = field(default_factory=dict)
    calculated_at: datetime = field(default_factory=datetime.utcnow)

    def get_modifier(self, target: ModifierTarget) -> int:
        result = self.modifiers.get(target)
        return result.total_value if result else 0

    def get_final_value(self, target: ModifierTarget) -> int:
        if target in self.final_stats:
            return self.final_stats[target]
        return self.base_stats.get(target, 0)

    def get_modifier_sources(self, target: ModifierTarget) -> list[ModifierSource]:
        return list(self.modifier_sources.get(target, []))

    def has_warnings(self, target: ModifierTarget | None = None) -> bool:
        if target is None:
            return any(self.validation_warnings.values())
        return bool(self.validation_warnings.get(target))

    def get_warnings(self, target: ModifierTarget) -> list[str]:
        return list(self.validation_warnings.get(target, []))

    def get_modifier_breakdown(self, target: ModifierTarget) -> str:
        """Describe every modifier on a target, one per line.

        Example line: ``Belt of Giant Strength: +2 [Item] (while raging)``
        """
        sources = self.modifier_sources.get(target)
        if not sources:
            return "No modifiers"

        lines = []
        for source in sources:
            sign = "+" if source.value >= 0 else ""
            line = f"{source.source_name}: {sign}{source.value}"
            if source.modifier_type != ModifierType.UNTYPED:
                line += f" [{source.modifier_type.label}]"
            if source.condition:
                line += f" ({source.condition})"
            lines.append(line)
        return "\n".join(lines)

    def to_api_response(self) -> dict[str, Any]:
        """Serialize with camelCase keys for API clients."""
        return {
            "characterId": self.character_id,
            "calculatedAt": self.calculated_at.isoformat(),
            "baseStats": {t.name: v for t, v in self.base_stats.items()},
            "finalStats": {t.name: v for t, v in self.final_stats.items()},
            "modifiers": {
                t.name: {
                    "value": r.total_value,
                    "warnings": list(r.stacking_warnings),
                    "sources": [s.to_dict() for s in self.modifier_sources.get(t, [])],
                }
                for t, r in self.modifiers.items()
            },
            "warnings": {t.name: list(w) for t, w in self.validation_warnings.items() if w},
        }


class ModifierEngine:
    """Applies typed-bonus stacking rules to a character's base statistics."""

    def calculate_character_stats(
        self,
        character_id: int | None,
        base_stats: dict[ModifierTarget, int],
        modifiers: Iterable[ModifierSpec],
    ) -> CalculatedCharacterStats:
        """Calculate final values for all statistics with modifiers applied.

        Args:
            character_id: Character the stats belong to
            base_stats: Base statistics, usually from :func:`base_stats_for`
            modifiers: All modifiers granted by the character's items and effects

        Returns:
            CalculatedCharacterStats with final values, sources and warnings
        """
        stats = CalculatedCharacterStats(character_id=character_id, base_stats=dict(base_stats))

        groups: dict[ModifierTarget, list[ModifierSpec]] = defaultdict(list)
        for modifier in modifiers:
            if modifier.is_active:
                groups[modifier.target].append(modifier)

        for target, target_modifiers in groups.items():
            # sorted() is stable, so equal priorities keep insertion order
            target_modifiers = sorted(target_modifiers, key=lambda m: m.priority)
            stats.modifiers[target] = self.calculate_stacked_modifier(target_modifiers)
            stats.modifier_sources[target] = [
                ModifierSource(
                    source_id=m.source_id,
                    source_name=m.source_name or "Unknown",
                    value=m.value,
                    modifier_type=m.modifier_type,
                    condition=m.condition,
                )
                for m in target_modifiers
            ]

        self._calculate_final_values(stats)
        self._validate_stacking(stats)
        return stats

    def calculate_stacked_modifier(self, modifiers: list[ModifierSpec]) -> ModifierResult:
        """Stack all modifiers that apply to one target."""
        result = ModifierResult()

        by_type: dict[ModifierType, list[ModifierSpec]] = defaultdict(list)
        for modifier in modifiers:
            by_type[modifier.modifier_type].append(modifier)

        for modifier_type, typed in by_type.items():
            if modifier_type == ModifierType.UNTYPED:
                result.total_value += sum(m.value for m in typed)
                continue

            bonuses = [m.value for m in typed if m.value > 0]
            penalties = [m.value for m in typed if m.value < 0]

            if bonuses:
                best = max(bonuses)
                result.total_value += best
                if len(bonuses) > 1:
                    result.stacking_warnings.append(
                        f"Multiple {modifier_type.label} bonuses don't stack. "
                        f"Only the highest (+{best}) applies."
                    )

            if penalties:
                worst = min(penalties)
                result.total_value += worst
                if len(penalties) > 1:
                    result.stacking_warnings.append(
                        f"Multiple {modifier_type.label} penalties don't stack. "
                        f"Only the worst ({worst}) applies."
                    )

        return result

    def _calculate_final_values(self, stats: CalculatedCharacterStats) -> None:
        for target, base_value in stats.base_stats.items():
            stats.final_stats[target] = base_value + stats.get_modifier(target)

        # Targets with modifiers but no base value start from zero
        for target, result in stats.modifiers.items():
            if target not in stats.final_stats:
                stats.final_stats[target] = result.total_value

        for ability in ABILITY_TARGETS:
            if ability not in stats.final_stats or ability not in stats.base_stats:
                continue
            change = ability_modifier(stats.final_stats[ability]) - ability_modifier(stats.base_stats[ability])
            if change == 0:
                continue
            for dependent in ABILITY_DEPENDENTS.get(ability, ()):
                if dependent in stats.final_stats:
                    stats.final_stats[dependent] += change

    def _validate_stacking(self, stats: CalculatedCharacterStats) -> None:
        for target, sources in stats.modifier_sources.items():
            conflicts = self.find_stacking_conflicts(sources)
            if conflicts:
                stats.validation_warnings.setdefault(target, []).extend(conflicts)

    @staticmethod
    def find_stacking_conflicts(sources: list[ModifierSource]) -> list[str]:
        """Name the sources whose same-typed bonuses or penalties overlap."""
        conflicts = []
        by_type: dict[ModifierType, list[ModifierSource]] = defaultdict(list)
        for source in sources:
            by_type[source.modifier_type].append(source)

        for modifier_type, typed in by_type.items():
            if modifier_type == ModifierType.UNTYPED:
                continue
            bonuses = [s.source_name for s in typed if s.value > 0]
            penalties = [s.source_name for s in typed if s.value < 0]
            if len(bonuses) > 1:
                conflicts.append(
                    f"Multiple {modifier_type.label} bonuses from: {', '.join(bonuses)}. "
                    "Only the highest applies."
                )
            if len(penalties) > 1:
                conflicts.append(
                    f"Multiple {modifier_type.label} penalties from: {', '.join(penalties)}. "
                    "Only the worst applies."
                )
        return conflicts
