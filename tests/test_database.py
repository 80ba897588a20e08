"""Tests for database models and session management."""

import random

import pytest

from pathkeeper.core.errors import DomainException, EncounterErrors
from pathkeeper.database.models import (
    Campaign,
    Character,
    CharacterNote,
    CombatantType,
    CustomDefinition,
    Encounter,
    MemberRole,
    NoteVisibility,
    Session,
    SessionCode,
    User,
)
from pathkeeper.database.session import get_session, reset_db, session_scope
from pathkeeper.rules.enums import CustomDefinitionType, ModifierTarget, ModifierType


def make_user(session, name="dm") -> User:
    user = User(email=f"{name}@example.com", username=name)
    session.add(user)
    session.flush()
    return user


class TestDatabaseSession:
    """Test database session management."""

    def test_init_db(self, temp_db):
        assert temp_db.exists()

    def test_get_session(self, temp_db):
        session = get_session()
        assert session is not None
        session.close()

    def test_reset_db(self, temp_db):
        """Reset drops every row."""
        with session_scope() as session:
            make_user(session)

        reset_db(temp_db)

        with session_scope() as session:
            assert session.query(User).count() == 0


class TestSessionCode:
    def test_generate_uses_code_alphabet(self):
        code = SessionCode.generate(random.Random(7))
        assert len(code.value) == 6
        assert all(ch in SessionCode.ALPHABET for ch in code.value)

    def test_from_string_normalizes_case(self):
        assert SessionCode.from_string(" abc123 ") == SessionCode("ABC123")

    def test_from_string_rejects_wrong_length(self):
        with pytest.raises(DomainException):
            SessionCode.from_string("ABC")


class TestSessionModel:
    def test_create_adds_dm_member(self, temp_db):
        with session_scope() as session:
            dm = make_user(session)
            game = Session.create(dm.id, "Friday Game")
            session.add(game)
            session.flush()

            member = game.get_member(dm.id)
            assert member.role == MemberRole.DM
            assert len(game.code) == 6

    def test_duplicate_member_rejected(self, temp_db):
        with session_scope() as session:
            dm = make_user(session)
            player = make_user(session, "player")
            game = Session.create(dm.id, "Friday Game")
            game.add_member(player.id, MemberRole.PLAYER, "Valeros")

            with pytest.raises(DomainException):
                game.add_member(player.id, MemberRole.PLAYER, "Again")


class TestUserModel:
    def test_login_and_activation(self, temp_db):
        with session_scope() as session:
            user = make_user(session)
            assert user.last_login_at is None
            user.record_login()
            user.deactivate()
            assert not user.is_active
            user.activate()
            assert user.is_active
            assert user.last_login_at is not None

    def test_session_settings_replace(self, temp_db):
        with session_scope() as session:
            dm = make_user(session)
            game = Session.create(dm.id, "Friday Game")
            session.add(game)
            settings = {"allowSpectators": True}
            game.update_settings(settings)
            settings["allowSpectators"] = False
            assert game.settings == {"allowSpectators": True}


class TestCustomDefinitionModel:
    def test_add_and_remove_modifier(self, temp_db):
        with session_scope() as session:
            owner = make_user(session)
            ring = CustomDefinition(owner_id=owner.id, type=CustomDefinitionType.ITEM, name="Ring of Protection")
            session.add(ring)
            deflect = ring.add_modifier(ModifierTarget.ARMOR_CLASS, 1, ModifierType.DEFLECTION)
            ring.add_modifier(ModifierTarget.REFLEX_SAVE, 1)
            session.flush()

            ring.remove_modifier(deflect)
            session.flush()
            assert [m.target for m in ring.modifiers] == [ModifierTarget.REFLEX_SAVE]
            assert ring.modifiers[0].to_spec().source_name == "Ring of Protection"


class TestCampaignModel:
    def test_membership(self, temp_db):
        with session_scope() as session:
            dm = make_user(session)
            player = make_user(session, "player")
            campaign = Campaign.create(dm.id, "Age of Ashes")
            session.add(campaign)
            campaign.add_member(player.id, "Kyra")
            session.flush()

            assert campaign.is_user_dm(dm.id)
            assert campaign.is_user_member(dm.id)
            assert campaign.is_user_member(player.id)
            assert campaign.alias_taken("kyra")
            assert not campaign.can_user_join(player.id)

    def test_regenerate_token(self, temp_db):
        with session_scope() as session:
            dm = make_user(session)
            campaign = Campaign.create(dm.id, "Age of Ashes")
            old = campaign.join_token
            assert campaign.regenerate_join_token() != old


class TestCharacterModel:
    def test_create_validates_level(self, temp_db):
        with pytest.raises(DomainException):
            Character.create(owner_id=1, name="Too High", level=21)

    def test_set_level_writes_audit_entry(self, temp_db):
        with session_scope() as session:
            owner = make_user(session)
            character = Character.create(owner.id, "Seoni", class_name="Sorcerer")
            session.add(character)
            character.set_level(3)
            session.flush()

            assert character.level == 3
            assert character.audit_log[-1]["message"] == "Level changed from 1 to 3"

    def test_json_fields_persist(self, temp_db):
        with session_scope() as session:
            owner = make_user(session)
            character = Character.create(owner.id, "Ezren", ability_scores={"Intelligence": 18})
            session.add(character)
            session.flush()
            character_id = character.id

        with session_scope() as session:
            character = session.get(Character, character_id)
            assert character.ability_scores["Intelligence"] == 18


class TestCharacterNoteModel:
    def test_visibility_rules(self):
        note = CharacterNote(author_id=1, title="Secret", visibility=NoteVisibility.PRIVATE)
        assert note.can_be_viewed_by(1)
        assert not note.can_be_viewed_by(2)

        note.change_visibility(NoteVisibility.SHARED)
        assert note.can_be_viewed_by(2)


class TestEncounterModel:
    """Test the persisted encounter state machine."""

    def make_encounter(self) -> Encounter:
        encounter = Encounter.create(session_id=1, name="Goblin Ambush")
        encounter.add_combatant(CombatantType.PC, "Valeros", initiative=12, max_hp=30)
        encounter.add_combatant(CombatantType.MONSTER, "Goblin", initiative=18)
        encounter.add_combatant(CombatantType.NPC, "Ameiko", initiative=5)
        return encounter

    def test_placeholder_hit_points(self):
        encounter = self.make_encounter()
        hp = {c["name"]: c["max_hp"] for c in encounter.combatants}
        assert hp == {"Valeros": 30, "Goblin": 25, "Ameiko": 15}

    def test_start_sorts_by_initiative(self):
        encounter = self.make_encounter()
        encounter.start()

        assert [c["name"] for c in encounter.combatants] == ["Goblin", "Valeros", "Ameiko"]
        assert encounter.round == 1
        assert encounter.active_combatant["name"] == "Goblin"

    def test_start_without_combatants(self):
        encounter = Encounter.create(session_id=1, name="Empty")
        with pytest.raises(DomainException) as exc:
            encounter.start()
        assert exc.value.error.code == EncounterErrors.NO_COMBATANTS

    def test_next_turn_skips_defeated_and_wraps(self):
        encounter = self.make_encounter()
        encounter.start()
        valeros = next(c for c in encounter.combatants if c["name"] == "Valeros")
        encounter.apply_damage(valeros["id"], 100)

        assert encounter.next_turn()["name"] == "Ameiko"
        assert encounter.next_turn()["name"] == "Goblin"
        assert encounter.round == 2

    def test_next_turn_after_active_combatant_drops(self):
        encounter = self.make_encounter()
        encounter.start()
        valeros = encounter.next_turn()
        encounter.apply_damage(valeros["id"], 99)

        assert encounter.next_turn()["name"] == "Ameiko"
        assert encounter.round == 1

    def test_removing_active_combatant_passes_the_turn(self):
        encounter = self.make_encounter()
        encounter.start()
        valeros = encounter.next_turn()
        encounter.remove_combatant(valeros["id"])

        assert encounter.active_combatant["name"] == "Ameiko"
        assert encounter.round == 1
        assert encounter.next_turn()["name"] == "Goblin"
        assert encounter.round == 2

    def test_next_turn_requires_active(self):
        encounter = self.make_encounter()
        with pytest.raises(DomainException):
            encounter.next_turn()

    def test_damage_and_healing_are_clamped(self):
        encounter = self.make_encounter()
        goblin = next(c for c in encounter.combatants if c["name"] == "Goblin")

        assert encounter.apply_damage(goblin["id"], 40)["current_hp"] == 0
        assert encounter.heal(goblin["id"], 100)["current_hp"] == 25

    def test_end_marks_completed(self):
        encounter = self.make_encounter()
        encounter.start()
        encounter.end()

        assert encounter.is_completed
        assert encounter.active_combatant_id is None
        with pytest.raises(DomainException):
            encounter.add_combatant(CombatantType.MONSTER, "Late Goblin")
