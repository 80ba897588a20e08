"""Tests for the live combat tracker."""

import random

import pytest

from pathkeeper.game.combat import Combatant, CombatantType, CombatState, CombatTracker
from pathkeeper.game.dice import DiceRoller


@pytest.fixture
def tracker():
    tracker = CombatTracker("1", roller=DiceRoller(rng=random.Random(1)))
    tracker.add_combatant(Combatant(id="pc", name="Valeros", combatant_type=CombatantType.PLAYER, initiative=12, max_hp=30, current_hp=30))
    tracker.add_combatant(Combatant(id="gob", name="Goblin", initiative=18, max_hp=6, current_hp=6))
    tracker.add_combatant(Combatant(id="npc", name="Ameiko", combatant_type=CombatantType.ALLY, initiative=5, max_hp=20, current_hp=20))
    return tracker


class TestCombatant:
    def test_from_dict_accepts_condition_list(self):
        combatant = Combatant.from_dict({"name": "Orc", "hit_points": 15, "conditions": ["prone"]})
        assert combatant.max_hp == 15
        assert combatant.current_hp == 15
        assert combatant.conditions == {"prone": 0}
        assert combatant.combatant_type == CombatantType.ENEMY

    def test_temp_hp_absorbs_damage_first(self):
        combatant = Combatant(name="Kyra", max_hp=20, current_hp=20, temp_hp=5)
        assert combatant.take_damage(8) == 3
        assert combatant.temp_hp == 0
        assert combatant.current_hp == 17

    def test_valued_conditions_keep_highest(self):
        combatant = Combatant(name="Kyra")
        combatant.add_condition("Frightened", 2)
        combatant.add_condition("frightened", 1)
        assert combatant.conditions == {"frightened": 2}

    def test_hp_status(self):
        combatant = Combatant(name="Kyra", max_hp=20, current_hp=4)
        assert combatant.hp_status == "Critical"
        combatant.current_hp = 0
        assert combatant.hp_status == "Unconscious"


class TestCombatTracker:
    """Turn order and state changes."""

    def test_sorted_by_initiative(self, tracker):
        assert [c.name for c in tracker.combatants] == ["Goblin", "Valeros", "Ameiko"]

    def test_start_and_next_turn(self, tracker):
        tracker.start_combat()
        assert tracker.state == CombatState.ACTIVE
        assert tracker.round_number == 1
        assert tracker.get_current_combatant().name == "Goblin"

        assert tracker.next_turn().name == "Valeros"
        assert tracker.next_turn().name == "Ameiko"
        assert tracker.next_turn().name == "Goblin"
        assert tracker.round_number == 2

    def test_next_turn_skips_unconscious(self, tracker):
        tracker.start_combat()
        tracker.apply_damage("pc", 100)
        assert tracker.next_turn().name == "Ameiko"

    def test_next_turn_requires_active_combat(self, tracker):
        assert tracker.next_turn() is None
        tracker.start_combat()
        tracker.pause_combat()
        assert tracker.next_turn() is None

    def test_pause_and_resume(self, tracker):
        tracker.start_combat()
        tracker.pause_combat()
        assert tracker.state == CombatState.PAUSED
        assert tracker.is_active
        tracker.resume_combat()
        assert tracker.state == CombatState.ACTIVE

    def test_set_initiative_keeps_current_turn(self, tracker):
        tracker.start_combat()
        tracker.next_turn()
        tracker.set_initiative("npc", 25)
        assert tracker.combatants[0].name == "Ameiko"
        assert tracker.get_current_combatant().name == "Valeros"

    def test_reordering_while_paused_keeps_current_turn(self, tracker):
        tracker.start_combat()
        tracker.next_turn()
        tracker.pause_combat()
        tracker.add_combatant(Combatant(id="ogre", name="Ogre", initiative=30, max_hp=50, current_hp=50))
        tracker.set_initiative("npc", 25)
        tracker.resume_combat()

        assert [c.name for c in tracker.combatants][:2] == ["Ogre", "Ameiko"]
        assert tracker.get_current_combatant().name == "Valeros"

    def test_remove_combatant_before_current(self, tracker):
        tracker.start_combat()
        tracker.next_turn()
        tracker.remove_combatant("gob")
        assert tracker.get_current_combatant().name == "Valeros"

    def test_unknown_participant(self, tracker):
        with pytest.raises(ValueError):
            tracker.get_combatant("missing")

    def test_roll_initiative(self, tracker):
        rolled = tracker.roll_initiative(["gob"])
        combatant, result = rolled[0]
        assert combatant.initiative == result.total
        assert 1 <= result.natural_roll <= 20

    def test_hit_points_are_clamped(self, tracker):
        combatant = tracker.set_hit_points("pc", 50)
        assert combatant.current_hp == 30
        combatant = tracker.set_hit_points("pc", 35, max_hp=40)
        assert combatant.current_hp == 35

    def test_saves(self, tracker):
        combatant = tracker.set_saves("pc", {"Fortitude": 9, "reflex": 6})
        assert combatant.fortitude == 9
        assert combatant.reflex == 6
        with pytest.raises(ValueError):
            tracker.set_saves("pc", {"luck": 1})

    def test_temporary_effects(self, tracker):
        effect = tracker.add_temporary_effect("pc", {"name": "Bless", "duration": 10})
        assert effect["id"]
        tracker.remove_temporary_effect("pc", effect["id"])
        assert tracker.get_combatant("pc").temporary_effects == []

    def test_healing_is_capped(self, tracker):
        tracker.apply_damage("npc", 10)
        assert tracker.apply_healing("npc", 50) == 10

    def test_to_dict(self, tracker):
        tracker.start_combat()
        tracker.set_position("gob", 3, 4)
        data = tracker.to_dict()
        assert data["state"] == "active"
        assert data["current_participant_id"] == "gob"
        assert data["participants"][0]["position"] == [3, 4]
        assert data["log"][0]["action_type"] == "join"

    def test_log_is_bounded(self):
        tracker = CombatTracker("2", log_length=3)
        for i in range(5):
            tracker.log_action("DM", "note", None, f"entry {i}")
        assert [a.description for a in tracker.combat_log] == ["entry 2", "entry 3", "entry 4"]
