"""Calculated character state shared by the calculator and rule modules."""

from dataclasses import dataclass, field
from typing import Any

from .enums import IssueSeverity
from .modifiers import ability_modifier

ABILITY_NAMES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")


@dataclass
class ValidationIssue:
    """A problem (or note) found while building a character."""

    severity: IssueSeverity
    message: str
    category: str = "General"
    code: str | None = None
    fix_action: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "category": self.category,
            "code": self.code,
            "fix_action": self.fix_action,
            "data": self.data,
        }


@dataclass
class FeatSlot:
    """A feat slot gained at a level."""

    slot_type: str
    level: int
    category: str = ""
    selected_feat: str | None = None
    is_required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.slot_type,
            "level": self.level,
            "category": self.category,
            "selected_feat": self.selected_feat,
            "is_required": self.is_required,
        }


@dataclass
class CalculatedCharacter:
    """Character statistics after variant rules have been applied."""

    character_id: int | None
    name: str
    level: int
    ability_scores: dict[str, int] = field(default_factory=dict)
    ability_modifiers: dict[str, int] = field(default_factory=dict)
    proficiency_bonuses: dict[str, int] = field(default_factory=dict)
    feat_slots: dict[str, list[FeatSlot]] = field(default_factory=dict)
    potency: dict[str, int] = field(default_factory=dict)

    armor_class: int = 10
    hit_points: int = 0
    initiative: int = 0
    perception: int = 0
    fortitude_save: int = 0
    reflex_save: int = 0
    will_save: int = 0
    class_dc: int = 10
    attack_bonus: int = 0
    speed: int = 25

    bulk_limit: int = 5
    current_bulk: int = 0
    is_encumbered: bool = False
    ignore_bulk_limit: bool = False

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """A character is valid when no Error issue was raised."""
        return not any(i.severity == IssueSeverity.ERROR for i in self.issues)

    def recalculate_ability_modifiers(self) -> None:
        self.ability_modifiers = {k: ability_modifier(v) for k, v in self.ability_scores.items()}

    def add_issue(self, severity: IssueSeverity, message: str, category: str = "General", **kwargs: Any) -> None:
        self.issues.append(ValidationIssue(severity=severity, message=message, category=category, **kwargs))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "character_id": self.character_id,
            "name": self.name,
            "level": self.level,
            "ability_scores": self.ability_scores,
            "ability_modifiers": self.ability_modifiers,
            "proficiency_bonuses": self.proficiency_bonuses,
            "feat_slots": {k: [s.to_dict() for s in v] for k, v in self.feat_slots.items()},
            "potency": self.potency,
            "armor_class": self.armor_class,
            "hit_points": self.hit_points,
            "initiative": self.initiative,
            "perception": self.perception,
            "saves": {
                "fortitude": self.fortitude_save,
                "reflex": self.reflex_save,
                "will": self.will_save,
            },
            "class_dc": self.class_dc,
            "attack_bonus": self.attack_bonus,
            "speed": self.speed,
            "bulk_limit": self.bulk_limit,
            "current_bulk": self.current_bulk,
            "is_encumbered": self.is_encumbered,
            "is_valid": self.is_valid,
            "issues": [i.to_dict() for i in self.issues],
        }
