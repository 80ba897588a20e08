"""Live combat tracker and initiative management for Pathfinder 2e.

One tracker exists per combat group on the combat hub. Unlike the persisted
``Encounter`` model, the tracker keeps the full table-side state: defenses,
saves, conditions with values, temporary effects and map positions.
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .dice import DiceResult, DiceRoller

SAVE_TYPES = ("fortitude", "reflex", "will")


class CombatantType(Enum):
    """Type of combatant."""

    PLAYER = "player"
    ALLY = "ally"
    ENEMY = "enemy"
    NEUTRAL = "neutral"


class CombatState(Enum):
    """State of combat."""

    NOT_STARTED = "not_started"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass
class Combatant:
    """A participant in combat."""

    name: str
    combatant_type: CombatantType = CombatantType.ENEMY
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    initiative: int = 0
    initiative_modifier: int = 0

    # Defenses
    max_hp: int = 1
    current_hp: int = 1
    temp_hp: int = 0
    armor_class: int = 10
    perception: int = 0
    fortitude: int = 0
    reflex: int = 0
    will: int = 0

    # Status; valued conditions (frightened 2) keep their value, others use 0
    conditions: dict[str, int] = field(default_factory=dict)
    temporary_effects: list[dict[str, Any]] = field(default_factory=list)
    position: tuple[int, int] | None = None
    is_hidden: bool = False
    has_acted: bool = False

    character_id: int | None = None
    npc_id: int | None = None
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Combatant":
        """Build a combatant from client supplied data."""
        max_hp = int(data.get("hit_points", data.get("max_hp", 1)))
        conditions = data.get("conditions") or {}
        if isinstance(conditions, list):
            conditions = {str(c): 0 for c in conditions}
        kwargs = {
            "name": str(data.get("name", "Unknown")),
            "combatant_type": CombatantType(data.get("type", CombatantType.ENEMY.value)),
            "initiative": int(data.get("initiative", 0)),
            "initiative_modifier": int(data.get("initiative_modifier", 0)),
            "max_hp": max_hp,
            "current_hp": int(data.get("current_hit_points", data.get("current_hp", max_hp))),
            "armor_class": int(data.get("armor_class", 10)),
            "perception": int(data.get("perception", 0)),
            "fortitude": int(data.get("fortitude", 0)),
            "reflex": int(data.get("reflex", 0)),
            "will": int(data.get("will", 0)),
            "conditions": {str(k): int(v) for k, v in conditions.items()},
            "is_hidden": bool(data.get("is_hidden", False)),
            "character_id": data.get("character_id"),
            "npc_id": data.get("npc_id"),
        }
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)

    @property
    def is_player_character(self) -> bool:
        return self.combatant_type == CombatantType.PLAYER

    @property
    def is_conscious(self) -> bool:
        return self.current_hp > 0

    @property
    def hp_status(self) -> str:
        """Get HP status description."""
        if self.current_hp <= 0:
            return "Dying" if "dying" in self.conditions else "Unconscious"
        if self.current_hp < self.max_hp * 0.25:
            return "Critical"
        if self.current_hp < self.max_hp * 0.5:
            return "Bloodied"
        return "Healthy"

    def take_damage(self, amount: int) -> int:
        """Apply damage; temporary hit points absorb it first.

        Returns:
            Hit points actually lost
        """
        if self.temp_hp > 0:
            absorbed = min(self.temp_hp, amount)
            self.temp_hp -= absorbed
            amount -= absorbed

        old_hp = self.current_hp
        self.current_hp = max(0, self.current_hp - amount)
        return old_hp - self.current_hp

    def heal(self, amount: int) -> int:
        old_hp = self.current_hp
        self.current_hp = min(self.current_hp + amount, self.max_hp)
        return self.current_hp - old_hp

    def add_condition(self, condition: str, value: int = 0) -> None:
        key = condition.lower()
        self.conditions[key] = max(value, self.conditions.get(key, 0))

    def remove_condition(self, condition: str) -> None:
        self.conditions.pop(condition.lower(), None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.combatant_type.value,
            "initiative": self.initiative,
            "initiative_modifier": self.initiative_modifier,
            "hit_points": self.max_hp,
            "current_hit_points": self.current_hp,
            "temp_hit_points": self.temp_hp,
            "armor_class": self.armor_class,
            "perception": self.perception,
            "fortitude": self.fortitude,
            "reflex": self.reflex,
            "will": self.will,
            "conditions": dict(self.conditions),
            "temporary_effects": list(self.temporary_effects),
            "position": list(self.position) if self.position else None,
            "status": self.hp_status,
            "is_hidden": self.is_hidden,
            "is_player_character": self.is_player_character,
            "character_id": self.character_id,
            "npc_id": self.npc_id,
        }


@dataclass
class CombatAction:
    """A recorded combat action."""

    round_number: int
    actor: str
    action_type: str
    target: str | None
    description: str
    timestamp: datetime = field(default_factory=datetime.utcnow)


class CombatTracker:
    """Manages a live combat."""

    def __init__(
        self,
        combat_id: str,
        name: str | None = None,
        roller: DiceRoller | None = None,
        log_length: int = 200,
        auto_sort: bool = True,
    ):
        self.combat_id = combat_id
        self.name = name or f"Combat {combat_id}"
        self.combatants: list[Combatant] = []
        self.current_turn: int = 0
        self.round_number: int = 0
        self.state: CombatState = CombatState.NOT_STARTED
        self.combat_log: deque[CombatAction] = deque(maxlen=log_length)
        self.map_data: dict[str, Any] = {}
        self.auto_sort = auto_sort
        self.roller = roller or DiceRoller()

        self.on_turn_change: Callable[[Combatant], None] | None = None
        self.on_round_change: Callable[[int], None] | None = None

    # -- participants -------------------------------------------------------

    def get_combatant(self, combatant_id: str) -> Combatant:
        """Find a combatant by id.

        Raises:
            ValueError: If no combatant has that id
        """
        for combatant in self.combatants:
            if combatant.id == combatant_id:
                return combatant
        raise ValueError(f"Participant not found: {combatant_id}")

    def add_combatant(self, combatant: Combatant) -> Combatant:
        """Add a combatant, keeping initiative order."""
        current = self._turn_holder()
        self.combatants.append(combatant)
        self._sort(keep_current=current)
        self.log_action(combatant.name, "join", None, f"{combatant.name} joins combat")
        return combatant

    def remove_combatant(self, combatant_id: str) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        index = self.combatants.index(combatant)
        self.combatants.remove(combatant)
        if index < self.current_turn:
            self.current_turn -= 1
        if self.current_turn >= len(self.combatants):
            self.current_turn = 0
        self.log_action(combatant.name, "leave", None, f"{combatant.name} leaves combat")
        return combatant

    def _turn_holder(self) -> Combatant | None:
        """Whoever holds the turn pointer, paused or not."""
        if not self.is_active or not 0 <= self.current_turn < len(self.combatants):
            return None
        return self.combatants[self.current_turn]

    def _sort(self, keep_current: Combatant | None = None) -> None:
        if not self.auto_sort:
            return
        # Ties go to the higher modifier
        self.combatants.sort(key=lambda c: (c.initiative, c.initiative_modifier), reverse=True)
        if keep_current is not None and keep_current in self.combatants:
            self.current_turn = self.combatants.index(keep_current)

    # -- flow ---------------------------------------------------------------

    def start_combat(self) -> None:
        """Start combat in initiative order."""
        self._sort()
        self.current_turn = 0
        self.round_number = 1
        self.state = CombatState.ACTIVE
        for combatant in self.combatants:
            combatant.has_acted = False

        if self.on_round_change:
            self.on_round_change(self.round_number)
        if self.combatants and self.on_turn_change:
            self.on_turn_change(self.combatants[0])

    def end_combat(self) -> None:
        self.state = CombatState.ENDED

    def pause_combat(self) -> None:
        if self.state == CombatState.ACTIVE:
            self.state = CombatState.PAUSED

    def resume_combat(self) -> None:
        if self.state == CombatState.PAUSED:
            self.state = CombatState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state in (CombatState.ACTIVE, CombatState.PAUSED)

    def get_current_combatant(self) -> Combatant | None:
        if not self.combatants or self.state != CombatState.ACTIVE:
            return None
        return self.combatants[self.current_turn]

    def next_turn(self) -> Combatant | None:
        """Advance to the next conscious, visible combatant.

        Returns:
            The new current combatant, or None if combat is not running
        """
        if self.state != CombatState.ACTIVE or not self.combatants:
            return None

        current = self.get_current_combatant()
        if current:
            current.has_acted = True

        for _ in range(len(self.combatants)):
            self.current_turn = (self.current_turn + 1) % len(self.combatants)

            if self.current_turn == 0:
                self.round_number += 1
                for combatant in self.combatants:
                    combatant.has_acted = False
                if self.on_round_change:
                    self.on_round_change(self.round_number)

            candidate = self.combatants[self.current_turn]
            if candidate.is_conscious:
                if self.on_turn_change:
                    self.on_turn_change(candidate)
                return candidate

        return None

    # -- updates ------------------------------------------------------------

    def set_initiative(self, combatant_id: str, initiative: int) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        current = self._turn_holder()
        combatant.initiative = initiative
        self._sort(keep_current=current)
        return combatant

    def roll_initiative(self, combatant_ids: list[str] | None = None) -> list[tuple[Combatant, DiceResult]]:
        """Roll d20 + initiative modifier and re-sort.

        Args:
            combatant_ids: Combatants to roll for; everyone when omitted

        Returns:
            (combatant, roll) pairs in the order rolled
        """
        targets = [self.get_combatant(cid) for cid in combatant_ids] if combatant_ids else list(self.combatants)
        current = self._turn_holder()
        rolled = []
        for combatant in targets:
            result = self.roller.roll_d20(combatant.initiative_modifier)
            combatant.initiative = result.total
            self.log_action(combatant.name, "initiative", None, f"{combatant.name} rolls initiative: {result}")
            rolled.append((combatant, result))
        self._sort(keep_current=current)
        return rolled

    def set_hit_points(self, combatant_id: str, current_hp: int, max_hp: int | None = None) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        if max_hp is not None:
            combatant.max_hp = max_hp
        combatant.current_hp = max(0, min(current_hp, combatant.max_hp))
        return combatant

    def set_armor_class(self, combatant_id: str, armor_class: int) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        combatant.armor_class = armor_class
        return combatant

    def set_saves(self, combatant_id: str, saves: dict[str, int]) -> Combatant:
        """Set saving throw modifiers.

        Raises:
            ValueError: For a save type other than fortitude, reflex or will
        """
        unknown = [name for name in saves if name.lower() not in SAVE_TYPES]
        if unknown:
            raise ValueError(f"Unknown save type: {', '.join(unknown)}")
        combatant = self.get_combatant(combatant_id)
        for name, value in saves.items():
            setattr(combatant, name.lower(), int(value))
        return combatant

    def add_condition(self, combatant_id: str, condition: str, value: int = 0) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        combatant.add_condition(condition, value)
        self.log_action(combatant.name, "condition", None, f"{combatant.name} is {condition.lower()}")
        return combatant

    def remove_condition(self, combatant_id: str, condition: str) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        combatant.remove_condition(condition)
        return combatant

    def set_conditions(self, combatant_id: str, conditions: dict[str, int] | list[str]) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        if isinstance(conditions, list):
            conditions = {c: 0 for c in conditions}
        combatant.conditions = {k.lower(): int(v) for k, v in conditions.items()}
        return combatant

    def add_temporary_effect(self, combatant_id: str, effect: dict[str, Any]) -> dict[str, Any]:
        combatant = self.get_combatant(combatant_id)
        effect = {"id": uuid.uuid4().hex, **effect}
        combatant.temporary_effects.append(effect)
        return effect

    def remove_temporary_effect(self, combatant_id: str, effect_id: str) -> None:
        combatant = self.get_combatant(combatant_id)
        combatant.temporary_effects = [e for e in combatant.temporary_effects if e.get("id") != effect_id]

    def set_position(self, combatant_id: str, x: int, y: int) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        combatant.position = (x, y)
        return combatant

    def apply_damage(self, combatant_id: str, amount: int, source: str = "Unknown") -> int:
        target = self.get_combatant(combatant_id)
        dealt = target.take_damage(amount)
        self.log_action(
            source,
            "damage",
            target.name,
            f"{target.name} takes {dealt} damage ({target.current_hp}/{target.max_hp} HP)",
        )
        return dealt

    def apply_healing(self, combatant_id: str, amount: int, source: str = "Unknown") -> int:
        target = self.get_combatant(combatant_id)
        healed = target.heal(amount)
        self.log_action(
            source,
            "heal",
            target.name,
            f"{target.name} heals {healed} HP ({target.current_hp}/{target.max_hp} HP)",
        )
        return healed

    def log_action(self, actor: str, action_type: str, target: str | None, description: str) -> CombatAction:
        action = CombatAction(
            round_number=self.round_number,
            actor=actor,
            action_type=action_type,
            target=target,
            description=description,
        )
        self.combat_log.append(action)
        return action

    def to_dict(self) -> dict[str, Any]:
        """Convert combat state to dictionary for serialization."""
        current = self.get_current_combatant()
        return {
            "id": self.combat_id,
            "name": self.name,
            "state": self.state.value,
            "is_active": self.is_active,
            "is_paused": self.state == CombatState.PAUSED,
            "round": self.round_number,
            "current_turn": self.current_turn,
            "current_participant_id": current.id if current else None,
            "participants": [c.to_dict() for c in self.combatants],
            "map": self.map_data,
            "log": [
                {
                    "round": a.round_number,
                    "actor": a.actor,
                    "action_type": a.action_type,
                    "target": a.target,
                    "description": a.description,
                    "timestamp": a.timestamp.isoformat(),
                }
                for a in self.combat_log
            ],
        }
