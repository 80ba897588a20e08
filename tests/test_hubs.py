"""Tests for the campaign and combat websocket hubs."""

import asyncio

import pytest

from pathkeeper.game.combat import Combatant, CombatantType
from pathkeeper.web.hubs import CampaignHub, CombatHub, HubGroup


class FakeSocket:
    """Records every message sent to it."""

    def __init__(self):
        self.sent = []

    async def send_json(self, message):
        self.sent.append(message)

    def types(self):
        return [m["type"] for m in self.sent]

    def last(self, event):
        return next(m for m in reversed(self.sent) if m["type"] == event)


class SlowSocket(FakeSocket):
    async def send_json(self, message):
        await asyncio.sleep(1)


class BrokenSocket(FakeSocket):
    async def send_json(self, message):
        raise RuntimeError("connection closed")


def run(coro):
    return asyncio.run(coro)


class TestHubGroup:
    def test_broadcast_excludes_sender(self):
        group = HubGroup("test", timeout_ms=100, max_strikes=3)
        a, b = FakeSocket(), FakeSocket()
        group.add("a", a)
        group.add("b", b)

        run(group.broadcast({"type": "Hello"}, exclude="a"))
        assert a.sent == []
        assert b.sent == [{"type": "Hello"}]

    def test_failed_client_is_dropped(self):
        group = HubGroup("test", timeout_ms=100, max_strikes=3)
        group.add("ok", FakeSocket())
        group.add("broken", BrokenSocket())

        run(group.broadcast({"type": "Hello"}))
        assert "broken" not in group
        assert "ok" in group

    def test_slow_client_dropped_after_strikes(self):
        group = HubGroup("test", timeout_ms=10, max_strikes=2)
        group.add("slow", SlowSocket())

        run(group.broadcast({"type": "One"}))
        assert "slow" in group
        assert group.slow_client_counts["slow"] == 1

        run(group.broadcast({"type": "Two"}))
        assert "slow" not in group


class TestCampaignHub:
    def setup_method(self):
        self.hub = CampaignHub()
        self.dm = FakeSocket()
        self.player = FakeSocket()

    async def connect_both(self):
        await self.hub.join("7", "c1", self.dm, "1", "DM")
        await self.hub.join("7", "c2", self.player, "2", "Kyra")

    def test_join_and_presence(self):
        run(self.connect_both())

        assert self.dm.types() == ["CampaignStateUpdated", "ConnectedUsersUpdated", "UserJoined"]
        assert self.dm.last("UserJoined")["alias"] == "Kyra"
        users = self.player.last("ConnectedUsersUpdated")["users"]
        assert [u["alias"] for u in users] == ["DM", "Kyra"]

    def test_leave_announces_and_cleans_up(self):
        async def scenario():
            await self.connect_both()
            await self.hub.leave("7", "c2")

        run(scenario())
        assert self.dm.last("UserLeft")["alias"] == "Kyra"
        assert [u["alias"] for u in self.dm.last("ConnectedUsersUpdated")["users"]] == ["DM"]

        run(self.hub.leave("7", "c1"))
        assert "7" not in self.hub.presence
        assert "7" not in self.hub.groups

    def test_second_connection_keeps_user_online(self):
        async def scenario():
            await self.connect_both()
            await self.hub.join("7", "c3", FakeSocket(), "2", "Kyra")
            await self.hub.leave("7", "c2")

        run(scenario())
        assert "UserLeft" not in self.dm.types()
        assert self.hub.presence["7"].users["2"].connection_ids == {"c3"}

    def test_character_sheets(self):
        async def scenario():
            await self.connect_both()
            await self.hub.dispatch(
                "7", "c2", {"method": "UpdateCharacterSheet", "args": {"characterId": 5, "data": {"hp": 12}}}
            )
            await self.hub.dispatch("7", "c1", {"method": "RequestCharacterSheet", "args": {"characterId": "5"}})
            await self.hub.dispatch("7", "c1", {"method": "RequestCharacterSheet", "args": {"characterId": "6"}})

        run(scenario())
        assert self.dm.last("CharacterSheetUpdated")["updated_by"] == "Kyra"
        assert "CharacterSheetUpdated" not in self.player.types()
        assert self.dm.last("CharacterSheetReceived")["data"] == {"hp": 12}
        assert self.dm.last("CharacterSheetNotFound")["character_id"] == "6"

    def test_messages_reach_everyone(self):
        async def scenario():
            await self.connect_both()
            await self.hub.dispatch("7", "c1", {"method": "BroadcastMessage", "args": {"message": "Roll initiative"}})

        run(scenario())
        for socket in (self.dm, self.player):
            message = socket.last("MessageReceived")
            assert message["message"] == "Roll initiative"
            assert message["sender"] == "DM"

    def test_combat_sessions_and_status(self):
        async def scenario():
            await self.connect_both()
            await self.hub.dispatch("7", "c1", {"method": "StartCombatSession", "args": {"combatId": 3}})
            await self.hub.dispatch("7", "c2", {"method": "UpdateUserStatus", "args": {"status": "Away"}})

        run(scenario())
        assert self.hub.presence["7"].combat_sessions == ["3"]
        assert self.player.last("CombatSessionStarted")["combat_id"] == "3"
        assert self.dm.last("UserStatusUpdated")["status"] == "Away"

        run(self.hub.dispatch("7", "c1", {"method": "EndCombatSession", "args": {"combatId": "3"}}))
        assert self.hub.presence["7"].combat_sessions == []

    def test_errors_go_to_caller(self):
        async def scenario():
            await self.connect_both()
            await self.hub.dispatch("7", "c2", {"method": "Teleport"})
            await self.hub.dispatch("7", "c2", {"method": "ShareContent", "args": {}})

        run(scenario())
        errors = [m["message"] for m in self.player.sent if m["type"] == "Error"]
        assert errors == ["Unknown method: Teleport", "Missing argument: contentType"]
        assert "Error" not in self.dm.types()


class TestCombatHub:
    @pytest.fixture
    def hub(self):
        def loader(encounter_id):
            if encounter_id != "1":
                return None
            return [
                Combatant(id="pc", name="Valeros", combatant_type=CombatantType.PLAYER, initiative=12, max_hp=30, current_hp=30),
                Combatant(id="gob", name="Goblin", initiative=18, max_hp=6, current_hp=6),
            ]

        return CombatHub(loader=loader)

    def test_join_sends_loaded_state(self, hub):
        socket = FakeSocket()
        run(hub.join("1", "c1", socket, "DM"))
        state = socket.last("CombatStateUpdated")["state"]
        assert [p["name"] for p in state["participants"]] == ["Goblin", "Valeros"]

        empty = FakeSocket()
        run(hub.join("2", "c2", empty, "DM"))
        assert empty.last("CombatStateUpdated")["state"]["participants"] == []

    def test_turn_flow(self, hub):
        dm, player = FakeSocket(), FakeSocket()

        async def scenario():
            await hub.join("1", "c1", dm, "DM")
            await hub.join("1", "c2", player, "Kyra")
            await hub.dispatch("1", "c1", {"method": "StartCombat"})
            await hub.dispatch("1", "c1", {"method": "NextTurn"})

        run(scenario())
        assert player.types()[-4:] == ["CombatStarted", "CombatStateUpdated", "TurnChanged", "CombatStateUpdated"]
        turn = player.last("TurnChanged")
        assert turn["participant_id"] == "pc"
        assert turn["round"] == 1

    def test_next_turn_requires_active_combat(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch("1", "c1", {"method": "NextTurn"})

        run(scenario())
        assert socket.last("Error")["message"] == "Combat is not active"

    def test_hit_points_and_conditions(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch(
                "1", "c1", {"method": "UpdateHitPoints", "args": {"participantId": "gob", "currentHp": 2}}
            )
            await hub.dispatch(
                "1",
                "c1",
                {"method": "AddCondition", "args": {"participantId": "gob", "condition": "Frightened", "value": 2}},
            )

        run(scenario())
        assert socket.last("HitPointsUpdated")["current_hp"] == 2
        assert socket.last("ConditionAdded")["condition"] == "frightened"
        goblin = hub.tracker_for("1").get_combatant("gob")
        assert goblin.conditions == {"frightened": 2}

    def test_unknown_participant(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch("1", "c1", {"method": "UpdateArmorClass", "args": {"participantId": "x", "armorClass": 18}})

        run(scenario())
        assert socket.last("Error")["type"] == "Error"

    def test_add_participant(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch(
                "1",
                "c1",
                {"method": "AddParticipant", "args": {"participant": {"name": "Ameiko", "type": "ally", "initiative": 25, "hit_points": 20}}},
            )

        run(scenario())
        assert socket.last("ParticipantAdded")["participant"]["name"] == "Ameiko"
        assert socket.last("CombatStateUpdated")["state"]["participants"][0]["name"] == "Ameiko"

    def test_share_server_roll(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch("1", "c1", {"method": "ShareDiceRoll", "args": {"notation": "2d6"}})
            await hub.dispatch("1", "c1", {"method": "Ping"})

        run(scenario())
        shared = socket.last("DiceRollShared")
        assert shared["rolled_by"] == "DM"
        assert 2 <= shared["roll"]["total"] <= 12
        assert socket.last("Pong")["message"] == "Connection is working"

    def test_leave_drops_empty_group(self, hub):
        async def scenario():
            await hub.join("1", "c1", FakeSocket(), "DM")
            await hub.leave("1", "c1")

        run(scenario())
        assert "1" not in hub.groups
        assert "1" not in hub.trackers

    def test_tracker_kept_while_watched(self, hub):
        async def scenario():
            await hub.join("1", "c1", FakeSocket(), "DM")
            await hub.join("1", "c2", FakeSocket(), "Kyra")
            await hub.leave("1", "c2")

        run(scenario())
        assert "1" in hub.trackers

    def test_malformed_messages_answered_with_error(self, hub):
        socket = FakeSocket()

        async def scenario():
            await hub.join("1", "c1", socket, "DM")
            await hub.dispatch("1", "c1", ["not", "an", "object"])
            await hub.dispatch("1", "c1", {"method": "Ping", "args": [1, 2]})
            await hub.dispatch("1", "c1", {"method": "Ping"})

        run(scenario())
        errors = [m["message"] for m in socket.sent if m["type"] == "Error"]
        assert errors == ["Message must be a JSON object"] * 2
        assert "c1" in hub.groups["1"]
        assert socket.last("Pong")
