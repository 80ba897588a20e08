"""Tests for the mediator pipeline and its command/query handlers."""

from dataclasses import dataclass

import pytest

from pathkeeper.core.errors import (
    AuthorizationErrors,
    CharacterErrors,
    DomainError,
    EncounterErrors,
    GeneralErrors,
    SessionErrors,
    http_status_for,
)
from pathkeeper.core.result import Result
from pathkeeper.database.session import session_scope
from pathkeeper.rules.enums import CustomDefinitionType
from pathkeeper.services import Command, Mediator, build_mediator
from pathkeeper.services.campaigns import (
    CreateCampaign,
    GetCampaign,
    JoinCampaign,
    ListMyCampaigns,
    RegenerateJoinToken,
    UpdateVariantRules,
)
from pathkeeper.services.characters import (
    CalculateCharacter,
    CreateCharacter,
    DeleteCharacter,
    GetCharacter,
    UpdateCharacter,
    UpdateCharacterLevel,
)
from pathkeeper.services.chat import GetChatHistory, RollDice, SendChatMessage, SendSystemMessage
from pathkeeper.services.custom_builds import (
    CreateCustomDefinition,
    CustomBuildsService,
    CreateMagicItem,
    GetCustomDefinition,
    SearchCustomDefinitions,
    UpdateCustomDefinition,
)
from pathkeeper.services.encounters import (
    AddCombatant,
    ApplyDamage,
    CreateEncounter,
    GetActiveEncounters,
    GetEncounterById,
    NextTurn,
    StartEncounter,
)
from pathkeeper.services.notes import ChangeNoteVisibility, CreateNote, GetNotes, UpdateNoteAppearance
from pathkeeper.services.npcs import (
    AssignNpcToSession,
    CreateNpcMonster,
    GetNpcMonsterById,
    GetNpcMonsterLibrary,
    UpdateNpcMonster,
)
from pathkeeper.services.sessions import AddCharacterToSession, CreateSession, GetSession, JoinSession
from pathkeeper.services.users import CreateUser, GetUser

FIGHTER_SCORES = {
    "strength": 16,
    "dexterity": 14,
    "constitution": 12,
    "intelligence": 10,
    "wisdom": 10,
    "charisma": 8,
}


@pytest.fixture
def mediator(temp_db):
    return build_mediator()


@pytest.fixture
def users(mediator):
    """A DM and two players."""
    ids = {}
    for name in ("dungeonmaster", "alice", "bob"):
        result = mediator.send(CreateUser(email=f"{name}@example.com", username=name))
        ids[name] = result.value["id"]
    return ids


def ok(result: Result):
    assert result.is_success, result.error
    return result.value


class TestMediator:
    """Validation, authorization and unit of work."""

    def test_error_from_exception(self):
        error = DomainError.from_exception(ValueError("bad roll"))
        assert error.code == "DOMAIN.EXCEPTION"
        assert error.to_dict()["details"] == {"exception": "ValueError"}
        assert http_status_for(error) == 400

    def test_unregistered_request(self, temp_db):
        with pytest.raises(LookupError):
            Mediator().send(GetUser(user_id=1), 1)

    def test_validation_runs_first(self, mediator):
        result = mediator.send(CreateUser(email="not-an-email", username="x"))
        assert result.error.code == GeneralErrors.VALIDATION_FAILED
        assert len(result.error.details["errors"]) == 2

    def test_authorization_required(self, mediator):
        result = mediator.send(GetUser(user_id=1))
        assert result.error.code == AuthorizationErrors.UNAUTHORIZED
        assert http_status_for(result.error) == 401

    def test_failed_command_rolls_back(self, temp_db):
        @dataclass
        class Explode(Command):
            pass

        def explode(db, request, user_id):
            from pathkeeper.database.models import User

            db.add(User(email="ghost@example.com", username="ghost"))
            db.flush()
            return Result.failure("nope")

        mediator = build_mediator()
        mediator.register(Explode, explode)
        assert mediator.send(Explode(), 1).is_failure

        result = mediator.send(CreateUser(email="ghost@example.com", username="ghost"))
        assert result.is_success

    def test_duplicate_email(self, mediator, users):
        result = mediator.send(CreateUser(email="ALICE@example.com", username="alice2"))
        assert result.error.code == "USER.EMAIL_ALREADY_EXISTS"


class TestSessions:
    def test_create_join_and_get(self, mediator, users):
        session = ok(mediator.send(CreateSession(name="Friday Game"), users["dungeonmaster"]))
        joined = ok(mediator.send(JoinSession(code=session["code"].lower(), alias="Kyra"), users["alice"]))
        assert [m["alias"] for m in joined["members"]] == ["DM", "Kyra"]

        by_code = ok(mediator.send(GetSession(code=session["code"]), users["alice"]))
        assert by_code["id"] == session["id"]

    def test_non_member_denied(self, mediator, users):
        session = ok(mediator.send(CreateSession(name="Friday Game"), users["dungeonmaster"]))
        result = mediator.send(GetSession(session_id=session["id"]), users["bob"])
        assert result.error.code == SessionErrors.ACCESS_DENIED

    def test_bad_code(self, mediator, users):
        result = mediator.send(JoinSession(code="ABC"), users["alice"])
        assert result.error.code == SessionErrors.INVALID_CODE

    def test_join_twice(self, mediator, users):
        session = ok(mediator.send(CreateSession(name="Friday Game"), users["dungeonmaster"]))
        mediator.send(JoinSession(code=session["code"]), users["alice"])
        result = mediator.send(JoinSession(code=session["code"]), users["alice"])
        assert result.error.code == SessionErrors.USER_ALREADY_MEMBER


class TestCampaigns:
    def test_join_link_and_aliases(self, mediator, users):
        campaign = ok(mediator.send(CreateCampaign(name="Age of Ashes"), users["dungeonmaster"]))
        token = campaign["join_token"]

        joined = ok(mediator.send(JoinCampaign(token=token, alias="Kyra"), users["alice"]))
        assert joined["member"]["alias"] == "Kyra"

        taken = mediator.send(JoinCampaign(token=token, alias="kyra"), users["bob"])
        assert "already taken" in taken.error.message

        again = mediator.send(JoinCampaign(token=token, alias="Other"), users["alice"])
        assert again.is_failure

    def test_player_view_hides_token(self, mediator, users):
        campaign = ok(mediator.send(CreateCampaign(name="Age of Ashes"), users["dungeonmaster"]))
        mediator.send(JoinCampaign(token=campaign["join_token"], alias="Kyra"), users["alice"])

        view = ok(mediator.send(GetCampaign(campaign_id=campaign["id"]), users["alice"]))
        assert "join_token" not in view
        assert [c["id"] for c in ok(mediator.send(ListMyCampaigns(), users["alice"]))] == [campaign["id"]]
        assert ok(mediator.send(ListMyCampaigns(), users["bob"])) == []

    def test_only_dm_regenerates_token(self, mediator, users):
        campaign = ok(mediator.send(CreateCampaign(name="Age of Ashes"), users["dungeonmaster"]))
        denied = mediator.send(RegenerateJoinToken(campaign_id=campaign["id"]), users["alice"])
        assert http_status_for(denied.error) == 403

        regenerated = ok(mediator.send(RegenerateJoinToken(campaign_id=campaign["id"]), users["dungeonmaster"]))
        assert regenerated["join_token"] != campaign["join_token"]
        old = mediator.send(JoinCampaign(token=campaign["join_token"], alias="Kyra"), users["alice"])
        assert old.is_failure

    def test_variant_rules_are_validated(self, mediator, users):
        result = mediator.send(CreateCampaign(name="Homebrew", variant_rules={"Bogus": True}), users["dungeonmaster"])
        assert result.error.code == GeneralErrors.VALIDATION_FAILED

        campaign = ok(mediator.send(CreateCampaign(name="Homebrew"), users["dungeonmaster"]))
        updated = ok(
            mediator.send(
                UpdateVariantRules(campaign_id=campaign["id"], variant_rules={"FreeArchetype": True}),
                users["dungeonmaster"],
            )
        )
        assert updated["variant_rules"] == {"FreeArchetype": True}


class TestCharacters:
    def create(self, mediator, owner, **kwargs):
        request = CreateCharacter(name="Valeros", class_name="Fighter", ability_scores=FIGHTER_SCORES, **kwargs)
        return ok(mediator.send(request, owner))

    def test_create_and_update(self, mediator, users):
        character = self.create(mediator, users["alice"])
        assert character["audit_log"][0]["message"] == "Character created"

        updated = ok(
            mediator.send(
                UpdateCharacter(character_id=character["id"], ability_scores={"strength": 18}), users["alice"]
            )
        )
        assert updated["ability_scores"]["strength"] == 18
        assert updated["ability_scores"]["dexterity"] == 14

    def test_rename_checks_length(self, mediator, users):
        character = self.create(mediator, users["alice"])

        result = mediator.send(UpdateCharacter(character_id=character["id"], name="V" * 101), users["alice"])
        assert result.error.code == GeneralErrors.VALIDATION_FAILED
        assert "100 characters or less" in result.error.message

        renamed = ok(mediator.send(UpdateCharacter(character_id=character["id"], name="V" * 100), users["alice"]))
        assert renamed["name"] == "V" * 100

    def test_invalid_scores(self, mediator, users):
        result = mediator.send(CreateCharacter(name="X", ability_scores={"luck": 10}), users["alice"])
        assert "Unknown ability score 'luck'" in result.error.message

    def test_visibility(self, mediator, users):
        private = self.create(mediator, users["alice"])
        public = self.create(mediator, users["alice"], visibility="public")

        denied = mediator.send(GetCharacter(character_id=private["id"]), users["bob"])
        assert denied.error.code == CharacterErrors.ACCESS_DENIED
        assert ok(mediator.send(GetCharacter(character_id=public["id"]), users["bob"]))["name"] == "Valeros"

    def test_session_only_visible_to_members(self, mediator, users):
        session = ok(mediator.send(CreateSession(name="Friday Game"), users["dungeonmaster"]))
        mediator.send(JoinSession(code=session["code"]), users["alice"])
        character = self.create(mediator, users["alice"], visibility="session_only")
        ok(mediator.send(AddCharacterToSession(session_id=session["id"], character_id=character["id"]), users["alice"]))

        assert mediator.send(GetCharacter(character_id=character["id"]), users["dungeonmaster"]).is_success
        assert mediator.send(GetCharacter(character_id=character["id"]), users["bob"]).is_failure

    def test_only_owner_changes_level(self, mediator, users):
        character = self.create(mediator, users["alice"])
        denied = mediator.send(UpdateCharacterLevel(character_id=character["id"], level=3), users["bob"])
        assert denied.error.code == CharacterErrors.NOT_OWNER

        invalid = mediator.send(UpdateCharacterLevel(character_id=character["id"], level=25), users["alice"])
        assert invalid.error.code == CharacterErrors.INVALID_LEVEL

    def test_delete(self, mediator, users):
        character = self.create(mediator, users["alice"])
        ok(mediator.send(DeleteCharacter(character_id=character["id"]), users["alice"]))
        missing = mediator.send(GetCharacter(character_id=character["id"]), users["alice"])
        assert http_status_for(missing.error) == 404

    def test_calculate_with_custom_item(self, mediator, users):
        character = self.create(mediator, users["alice"])
        item = ok(
            mediator.send(
                CreateMagicItem(
                    name="Ring of Protection",
                    modifiers=[{"target": "ARMOR_CLASS", "value": 1, "type": "ITEM"}],
                ),
                users["alice"],
            )
        )

        result = ok(
            mediator.send(
                CalculateCharacter(character_id=character["id"], custom_item_ids=[item["id"]]), users["alice"]
            )
        )
        assert result["armor_class"] == 15
        assert result["modifier_stats"]["finalStats"]["ARMOR_CLASS"] == 16
        assert result["modifier_stats"]["modifiers"]["ARMOR_CLASS"]["sources"][0]["sourceName"] == "Ring of Protection"

    def test_calculate_rejects_unknown_variant(self, mediator, users):
        character = self.create(mediator, users["alice"])
        result = mediator.send(
            CalculateCharacter(character_id=character["id"], variant_rules={"Bogus": True}), users["alice"]
        )
        assert result.error.code == GeneralErrors.VALIDATION_FAILED


class TestEncounters:
    @pytest.fixture
    def encounter(self, mediator, users):
        session = ok(mediator.send(CreateSession(name="Friday Game"), users["dungeonmaster"]))
        mediator.send(JoinSession(code=session["code"]), users["alice"])
        return ok(mediator.send(CreateEncounter(session_id=session["id"], name="Ambush"), users["dungeonmaster"]))

    def add(self, mediator, users, encounter, **kwargs):
        request = AddCombatant(encounter_id=encounter["id"], **kwargs)
        return ok(mediator.send(request, users["dungeonmaster"]))["combatant"]

    def test_flow(self, mediator, users, encounter):
        dm = users["dungeonmaster"]
        goblin = self.add(mediator, users, encounter, name="Goblin", initiative=15)
        self.add(mediator, users, encounter, combatant_type="PC", name="Kyra", initiative=20, max_hp=18)

        started = ok(mediator.send(StartEncounter(encounter_id=encounter["id"]), dm))
        assert started["combatants"][0]["name"] == "Kyra"
        assert started["round"] == 1

        damaged = ok(mediator.send(ApplyDamage(encounter_id=encounter["id"], combatant_id=goblin["id"], amount=30), dm))
        assert next(c for c in damaged["combatants"] if c["id"] == goblin["id"])["current_hp"] == 0

        turn = ok(mediator.send(NextTurn(encounter_id=encounter["id"]), dm))
        assert turn["round"] == 2
        assert turn["active_combatant_id"] == started["combatants"][0]["id"]

        active = ok(mediator.send(GetActiveEncounters(), users["alice"]))
        assert [e["id"] for e in active] == [encounter["id"]]

    def test_players_cannot_run_encounters(self, mediator, users, encounter):
        result = mediator.send(StartEncounter(encounter_id=encounter["id"]), users["alice"])
        assert result.error.code == EncounterErrors.ACCESS_DENIED
        assert ok(mediator.send(GetEncounterById(encounter_id=encounter["id"]), users["alice"]))["name"] == "Ambush"
        assert mediator.send(GetEncounterById(encounter_id=encounter["id"]), users["bob"]).is_failure

    def test_start_without_combatants(self, mediator, users, encounter):
        result = mediator.send(StartEncounter(encounter_id=encounter["id"]), users["dungeonmaster"])
        assert result.error.code == EncounterErrors.NO_COMBATANTS

    def test_npc_reference_supplies_hit_points(self, mediator, users, encounter):
        npc = ok(mediator.send(CreateNpcMonster(data={"name": "Ogre", "hit_points": 50}), users["dungeonmaster"]))
        combatant = self.add(mediator, users, encounter, combatant_type="Monster", ref_id=npc["id"])
        assert combatant["name"] == "Ogre"
        assert combatant["max_hp"] == 50


class TestNotes:
    def test_visibility_and_ordering(self, mediator, users):
        character = ok(mediator.send(CreateCharacter(name="Kyra", visibility="public"), users["alice"]))
        first = ok(mediator.send(CreateNote(character_id=character["id"], title="Secret"), users["alice"]))
        second = ok(
            mediator.send(
                CreateNote(character_id=character["id"], title="Shared", visibility="shared"), users["alice"]
            )
        )
        ok(mediator.send(UpdateNoteAppearance(note_id=second["id"], is_pinned=True), users["alice"]))

        mine = ok(mediator.send(GetNotes(character_id=character["id"]), users["alice"]))
        assert [n["title"] for n in mine] == ["Shared", "Secret"]
        theirs = ok(mediator.send(GetNotes(character_id=character["id"]), users["bob"]))
        assert [n["title"] for n in theirs] == ["Shared"]

        denied = mediator.send(ChangeNoteVisibility(note_id=first["id"], visibility="shared"), users["bob"])
        assert denied.is_failure


class TestNpcs:
    def test_create_update_and_assign(self, mediator, users):
        dm = users["dungeonmaster"]
        npc = ok(mediator.send(CreateNpcMonster(data={"name": "Ameiko", "type": "NPC", "level": 3}), dm))
        updated = ok(mediator.send(UpdateNpcMonster(npc_id=npc["id"], data={"level": 4}), dm))
        assert updated["level"] == 4

        denied = mediator.send(UpdateNpcMonster(npc_id=npc["id"], data={"level": 5}), users["alice"])
        assert http_status_for(denied.error) == 403

        session = ok(mediator.send(CreateSession(name="Friday Game"), dm))
        ok(mediator.send(AssignNpcToSession(npc_id=npc["id"], session_id=session["id"]), dm))
        mediator.send(JoinSession(code=session["code"]), users["alice"])
        assert mediator.send(GetNpcMonsterById(npc_id=npc["id"]), users["alice"]).is_success
        assert mediator.send(GetNpcMonsterById(npc_id=npc["id"]), users["bob"]).is_failure

    def test_unknown_fields_rejected(self, mediator, users):
        result = mediator.send(CreateNpcMonster(data={"name": "X", "owner_id": 5}), users["dungeonmaster"])
        assert "Unknown fields: owner_id" in result.error.message

    def test_library_needs_no_user(self, mediator):
        assert ok(mediator.send(GetNpcMonsterLibrary())) == []


class TestChat:
    @pytest.fixture
    def campaign(self, mediator, users):
        campaign = ok(mediator.send(CreateCampaign(name="Age of Ashes"), users["dungeonmaster"]))
        mediator.send(JoinCampaign(token=campaign["join_token"], alias="Kyra"), users["alice"])
        mediator.send(JoinCampaign(token=campaign["join_token"], alias="Merisiel"), users["bob"])
        return campaign

    def test_messages_and_private_rolls(self, mediator, users, campaign):
        ok(mediator.send(SendChatMessage(campaign_id=campaign["id"], content="Hello"), users["alice"]))
        roll = ok(
            mediator.send(
                RollDice(campaign_id=campaign["id"], notation="1d20+5", reason="Stealth", is_private=True),
                users["alice"],
            )
        )
        assert roll["message_type"] == "DICE_ROLL"
        assert roll["content"].startswith("Kyra rolled 1d20+5")
        assert roll["metadata"]["isPrivate"] is True

        bob_view = [m["content"] for m in ok(mediator.send(GetChatHistory(campaign_id=campaign["id"]), users["bob"]))]
        dm_view = ok(mediator.send(GetChatHistory(campaign_id=campaign["id"]), users["dungeonmaster"]))
        assert "Hello" in bob_view
        assert not any("rolled" in c for c in bob_view)
        assert any(m["message_type"] == "DICE_ROLL" for m in dm_view)

    def test_system_messages_are_dm_only(self, mediator, users, campaign):
        denied = mediator.send(SendSystemMessage(campaign_id=campaign["id"], content="Rest"), users["alice"])
        assert denied.is_failure
        assert ok(mediator.send(SendSystemMessage(campaign_id=campaign["id"], content="Rest"), users["dungeonmaster"]))

    def test_invalid_notation(self, mediator, users, campaign):
        result = mediator.send(RollDice(campaign_id=campaign["id"], notation="banana"), users["alice"])
        assert result.error.code == GeneralErrors.VALIDATION_FAILED

    def test_cannot_send_system_type(self, mediator, users, campaign):
        result = mediator.send(
            SendChatMessage(campaign_id=campaign["id"], content="x", message_type="SYSTEM"), users["alice"]
        )
        assert result.is_failure


class TestCustomDefinitions:
    def test_create_search_and_update(self, mediator, users):
        alice = users["alice"]
        private = ok(mediator.send(CreateCustomDefinition(definition_type="FEAT", name="Secret Style"), alice))
        public = ok(mediator.send(CreateMagicItem(name="Flaming Sword", is_public=True), alice))
        assert "Magical" in public["traits"]
        assert public["category"] == "Magic Item"

        everyone = ok(mediator.send(SearchCustomDefinitions()))
        assert [d["name"] for d in everyone] == ["Flaming Sword"]
        mine = ok(mediator.send(SearchCustomDefinitions(include_mine=True), alice))
        assert {d["name"] for d in mine} == {"Flaming Sword", "Secret Style"}

        assert mediator.send(GetCustomDefinition(definition_id=private["id"])).is_failure

        updated = ok(mediator.send(UpdateCustomDefinition(definition_id=public["id"], description="Burns"), alice))
        assert updated["version"] == 2
        assert mediator.send(UpdateCustomDefinition(definition_id=public["id"], name="X"), users["bob"]).is_failure

    def test_modifier_limits(self, mediator, users):
        result = mediator.send(
            CreateCustomDefinition(name="Overkill", modifiers=[{"target": "ARMOR_CLASS", "value": 99}]),
            users["alice"],
        )
        assert "Modifier value must be between" in result.error.message

        unknown = mediator.send(
            CreateCustomDefinition(name="Odd", modifiers=[{"target": "LUCK", "value": 1}]), users["alice"]
        )
        assert unknown.error.code == GeneralErrors.VALIDATION_FAILED

    def test_definitions_by_owner(self, mediator, users):
        alice = users["alice"]
        ok(mediator.send(CreateCustomDefinition(definition_type="FEAT", name="Secret Style"), alice))
        ok(mediator.send(CreateMagicItem(name="Flaming Sword"), alice))

        with session_scope() as db:
            service = CustomBuildsService(db)
            assert [d.name for d in ok(service.get_user_definitions(alice))] == ["Flaming Sword", "Secret Style"]
            feats = ok(service.get_user_definitions(alice, CustomDefinitionType.FEAT))
            assert [d.name for d in feats] == ["Secret Style"]
            assert ok(service.get_user_definitions(users["bob"])) == []
