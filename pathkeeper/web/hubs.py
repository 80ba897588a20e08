"""Real-time hubs for campaigns and live combat.

Clients invoke hub methods by sending ``{"method": <name>, "args": {...}}``
over the websocket. Hubs answer with ``{"type": <event>, ...}`` messages,
either to the caller or to every connection in the group.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from fastapi import WebSocket

from ..config import get_config
from ..game.combat import Combatant, CombatState, CombatTracker
from ..game.dice import DiceRoller

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.utcnow().isoformat()


class HubGroup:
    """A named set of websocket connections that receive the same broadcasts."""

    def __init__(self, name: str, timeout_ms: int | None = None, max_strikes: int | None = None):
        server = get_config().server
        self.name = name
        self.timeout_ms = timeout_ms if timeout_ms is not None else server.broadcast_timeout_ms
        self.max_strikes = max_strikes if max_strikes is not None else server.max_slow_strikes
        self.clients: dict[str, WebSocket] = {}
        # Backpressure tracking for slow clients
        self.slow_client_counts: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.clients)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self.clients

    def add(self, connection_id: str, websocket: WebSocket) -> None:
        self.clients[connection_id] = websocket

    def remove(self, connection_id: str) -> None:
        self.clients.pop(connection_id, None)
        self.slow_client_counts.pop(connection_id, None)

    def is_empty(self) -> bool:
        return not self.clients

    async def send_to(self, connection_id: str, message: dict) -> None:
        websocket = self.clients.get(connection_id)
        if websocket is not None:
            await websocket.send_json(message)

    async def broadcast(self, message: dict, exclude: str | None = None) -> None:
        """Send to every connection in parallel with a per-client timeout.

        A client is dropped after ``max_strikes`` timeouts in a row or on any
        send error.
        """
        targets = [(cid, ws) for cid, ws in self.clients.items() if cid != exclude]
        if not targets:
            return

        async def send_to_client(connection_id: str, ws: WebSocket) -> tuple[str, str]:
            try:
                async with asyncio.timeout(self.timeout_ms / 1000):
                    await ws.send_json(message)
                return (connection_id, "ok")
            except asyncio.TimeoutError:
                logger.warning(f"[{self.name}] Send timeout to '{connection_id}' ({self.timeout_ms}ms)")
                self.slow_client_counts[connection_id] = self.slow_client_counts.get(connection_id, 0) + 1
                if self.slow_client_counts[connection_id] >= self.max_strikes:
                    logger.warning(
                        f"[{self.name}] Removing slow client '{connection_id}' after {self.max_strikes} timeouts"
                    )
                    return (connection_id, "drop")
                return (connection_id, "slow")
            except Exception as e:
                logger.warning(f"[{self.name}] Failed to send to '{connection_id}': {e}")
                return (connection_id, "drop")

        results = await asyncio.gather(*(send_to_client(cid, ws) for cid, ws in targets), return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                logger.error(f"[{self.name}] Broadcast exception: {result}")
                continue
            connection_id, outcome = result
            if outcome == "drop":
                self.remove(connection_id)
            elif outcome == "ok" and connection_id in self.slow_client_counts:
                self.slow_client_counts[connection_id] = max(0, self.slow_client_counts[connection_id] - 1)


@dataclass
class HubCall:
    """One method invocation from a connection."""

    group: HubGroup
    connection_id: str
    sender: str
    args: dict[str, Any]

    async def reply(self, event: str, **payload: Any) -> None:
        await self.group.send_to(self.connection_id, {"type": event, **payload})

    async def broadcast(self, event: str, **payload: Any) -> None:
        await self.group.broadcast({"type": event, **payload})


class Hub:
    """Groups keyed by id plus a method table for incoming invocations."""

    group_prefix = "Hub"
    methods: dict[str, str] = {}

    def __init__(self):
        self.groups: dict[str, HubGroup] = {}
        self.names: dict[str, str] = {}

    def group(self, key: str) -> HubGroup:
        if key not in self.groups:
            self.groups[key] = HubGroup(f"{self.group_prefix}-{key}")
        return self.groups[key]

    def _drop(self, key: str, connection_id: str) -> HubGroup | None:
        group = self.groups.get(key)
        self.names.pop(connection_id, None)
        if group is None:
            return None
        group.remove(connection_id)
        if group.is_empty():
            del self.groups[key]
        return group

    async def dispatch(self, key: str, connection_id: str, message: Any) -> None:
        """Run one invocation; failures go back to the caller as an Error event."""
        group = self.group(key)
        if not isinstance(message, dict) or not isinstance(message.get("args") or {}, dict):
            await group.send_to(connection_id, {"type": "Error", "message": "Message must be a JSON object"})
            return

        method = message.get("method") or message.get("type") or ""
        call = HubCall(group, connection_id, self.names.get(connection_id, "Unknown"), message.get("args") or {})

        handler_name = self.methods.get(method)
        if handler_name is None:
            await call.reply("Error", message=f"Unknown method: {method}")
            return

        try:
            await getattr(self, handler_name)(key, call)
        except KeyError as e:
            await call.reply("Error", message=f"Missing argument: {e.args[0]}")
        except (ValueError, TypeError) as e:
            logger.warning(f"[{group.name}] {method} failed: {e}")
            await call.reply("Error", message=str(e))


# -- campaigns ---------------------------------------------------------------


@dataclass
class ConnectedUser:
    user_id: str
    alias: str
    connection_ids: set[str] = field(default_factory=set)
    status: str = "Online"
    activity: str = ""
    last_seen: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "alias": self.alias,
            "connections": len(self.connection_ids),
            "status": self.status,
            "activity": self.activity,
            "last_seen": self.last_seen.isoformat(),
        }


@dataclass
class CampaignPresence:
    """Who is connected to a campaign and what they are sharing."""

    campaign_id: str
    users: dict[str, ConnectedUser] = field(default_factory=dict)
    character_sheets: dict[str, Any] = field(default_factory=dict)
    combat_sessions: list[str] = field(default_factory=list)
    last_activity: datetime = field(default_factory=datetime.utcnow)

    def user_for(self, connection_id: str) -> ConnectedUser | None:
        return next((u for u in self.users.values() if connection_id in u.connection_ids), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "connected_users": [u.to_dict() for u in self.users.values()],
            "character_sheets": dict(self.character_sheets),
            "combat_sessions": list(self.combat_sessions),
            "last_activity": self.last_activity.isoformat(),
        }


class CampaignHub(Hub):
    """Presence, shared character sheets and messages for a campaign."""

    group_prefix = "Campaign"
    methods = {
        "UpdateCharacterSheet": "update_character_sheet",
        "RequestCharacterSheet": "request_character_sheet",
        "BroadcastMessage": "broadcast_message",
        "StartCombatSession": "start_combat_session",
        "EndCombatSession": "end_combat_session",
        "UpdateUserStatus": "update_user_status",
        "ShareContent": "share_content",
    }

    def __init__(self):
        super().__init__()
        self.presence: dict[str, CampaignPresence] = {}

    def presence_for(self, campaign_id: str) -> CampaignPresence:
        if campaign_id not in self.presence:
            self.presence[campaign_id] = CampaignPresence(campaign_id)
        return self.presence[campaign_id]

    async def join(self, campaign_id: str, connection_id: str, websocket: WebSocket, user_id: str, alias: str) -> None:
        group = self.group(campaign_id)
        group.add(connection_id, websocket)
        self.names[connection_id] = alias

        presence = self.presence_for(campaign_id)
        user = presence.users.get(user_id)
        if user is None:
            user = presence.users[user_id] = ConnectedUser(user_id, alias)
        user.connection_ids.add(connection_id)
        user.last_seen = datetime.utcnow()
        logger.info(f"[{group.name}] {alias} connected")

        await group.broadcast(
            {"type": "UserJoined", "user_id": user_id, "alias": alias, "timestamp": _now()},
            exclude=connection_id,
        )
        await group.send_to(connection_id, {"type": "CampaignStateUpdated", "state": presence.to_dict()})
        await group.send_to(
            connection_id,
            {"type": "ConnectedUsersUpdated", "users": [u.to_dict() for u in presence.users.values()]},
        )

    async def leave(self, campaign_id: str, connection_id: str) -> None:
        presence = self.presence.get(campaign_id)
        user = presence.user_for(connection_id) if presence else None
        group = self._drop(campaign_id, connection_id)
        if presence is None or user is None:
            return

        user.connection_ids.discard(connection_id)
        user.last_seen = datetime.utcnow()
        if group is None or group.is_empty():
            self.presence.pop(campaign_id, None)
            logger.info(f"[Campaign-{campaign_id}] {user.alias} disconnected, campaign idle")
            return

        if not user.connection_ids:
            del presence.users[user.user_id]
            await group.broadcast(
                {"type": "UserLeft", "user_id": user.user_id, "alias": user.alias, "timestamp": _now()}
            )
        await group.broadcast(
            {"type": "ConnectedUsersUpdated", "users": [u.to_dict() for u in presence.users.values()]}
        )
        logger.info(f"[{group.name}] {user.alias} disconnected")

    async def update_character_sheet(self, campaign_id: str, call: HubCall) -> None:
        presence = self.presence_for(campaign_id)
        character_id = str(call.args["characterId"])
        presence.character_sheets[character_id] = call.args.get("data")
        presence.last_activity = datetime.utcnow()
        await call.group.broadcast(
            {
                "type": "CharacterSheetUpdated",
                "character_id": character_id,
                "data": call.args.get("data"),
                "updated_by": call.sender,
            },
            exclude=call.connection_id,
        )

    async def request_character_sheet(self, campaign_id: str, call: HubCall) -> None:
        character_id = str(call.args["characterId"])
        sheets = self.presence_for(campaign_id).character_sheets
        if character_id in sheets:
            await call.reply("CharacterSheetReceived", character_id=character_id, data=sheets[character_id])
        else:
            await call.reply("CharacterSheetNotFound", character_id=character_id)

    async def broadcast_message(self, campaign_id: str, call: HubCall) -> None:
        await call.broadcast(
            "MessageReceived",
            message=str(call.args["message"]),
            message_type=call.args.get("messageType", "info"),
            sender=call.sender,
            timestamp=_now(),
        )

    async def start_combat_session(self, campaign_id: str, call: HubCall) -> None:
        combat_id = str(call.args["combatId"])
        sessions = self.presence_for(campaign_id).combat_sessions
        if combat_id not in sessions:
            sessions.append(combat_id)
        await call.broadcast("CombatSessionStarted", combat_id=combat_id, timestamp=_now())

    async def end_combat_session(self, campaign_id: str, call: HubCall) -> None:
        combat_id = str(call.args["combatId"])
        sessions = self.presence_for(campaign_id).combat_sessions
        if combat_id in sessions:
            sessions.remove(combat_id)
        await call.broadcast("CombatSessionEnded", combat_id=combat_id, timestamp=_now())

    async def update_user_status(self, campaign_id: str, call: HubCall) -> None:
        user = self.presence_for(campaign_id).user_for(call.connection_id)
        if user is None:
            raise ValueError("Not connected to this campaign")
        user.status = str(call.args["status"])
        user.activity = str(call.args.get("activity", ""))
        user.last_seen = datetime.utcnow()
        await call.group.broadcast(
            {
                "type": "UserStatusUpdated",
                "user_id": user.user_id,
                "status": user.status,
                "activity": user.activity,
                "timestamp": _now(),
            },
            exclude=call.connection_id,
        )

    async def share_content(self, campaign_id: str, call: HubCall) -> None:
        await call.broadcast(
            "ContentShared",
            content_type=str(call.args["contentType"]),
            content=call.args.get("content"),
            title=call.args.get("title", ""),
            shared_by=call.sender,
            timestamp=_now(),
        )


# -- combat ------------------------------------------------------------------


class CombatHub(Hub):
    """Live combat state shared by everyone watching an encounter.

    Every state-changing method broadcasts its own event followed by
    ``CombatStateUpdated`` with the full tracker state.
    """

    group_prefix = "Combat"
    methods = {
        "Ping": "ping",
        "UpdateInitiative": "update_initiative",
        "UpdateHitPoints": "update_hit_points",
        "UpdateArmorClass": "update_armor_class",
        "UpdateSaves": "update_saves",
        "AddParticipant": "add_participant",
        "RemoveParticipant": "remove_participant",
        "StartCombat": "start_combat",
        "EndCombat": "end_combat",
        "PauseCombat": "pause_combat",
        "ResumeCombat": "resume_combat",
        "NextTurn": "next_turn",
        "AddCondition": "add_condition",
        "RemoveCondition": "remove_condition",
        "AddTemporaryEffect": "add_temporary_effect",
        "RemoveTemporaryEffect": "remove_temporary_effect",
        "UpdatePosition": "update_position",
        "RollInitiative": "roll_initiative",
        "SendCombatMessage": "send_combat_message",
        "RequestReroll": "request_reroll",
        "ShareDiceRoll": "share_dice_roll",
        "UpdateMap": "update_map",
    }

    def __init__(
        self,
        loader: Callable[[str], list[Combatant] | None] | None = None,
        roller: DiceRoller | None = None,
    ):
        super().__init__()
        self.trackers: dict[str, CombatTracker] = {}
        self.loader = loader
        self.roller = roller or DiceRoller()

    def tracker_for(self, encounter_id: str) -> CombatTracker:
        """Live tracker for an encounter, seeded from storage on first use."""
        if encounter_id not in self.trackers:
            combat = get_config().combat
            tracker = CombatTracker(
                encounter_id,
                roller=self.roller,
                log_length=combat.combat_log_length,
                auto_sort=combat.auto_sort_initiative,
            )
            for combatant in (self.loader(encounter_id) if self.loader else None) or []:
                tracker.add_combatant(combatant)
            self.trackers[encounter_id] = tracker
        return self.trackers[encounter_id]

    async def join(self, encounter_id: str, connection_id: str, websocket: WebSocket, name: str = "Unknown") -> None:
        group = self.group(encounter_id)
        group.add(connection_id, websocket)
        self.names[connection_id] = name
        logger.info(f"[{group.name}] {name} joined")
        tracker = self.tracker_for(encounter_id)
        await group.send_to(connection_id, {"type": "CombatStateUpdated", "state": tracker.to_dict()})

    async def leave(self, encounter_id: str, connection_id: str) -> None:
        name = self.names.get(connection_id, "Unknown")
        self._drop(encounter_id, connection_id)
        if encounter_id not in self.groups:
            # Last watcher gone; the next join reloads from storage
            self.trackers.pop(encounter_id, None)
        logger.info(f"[Combat-{encounter_id}] {name} left")

    async def _changed(self, encounter_id: str, call: HubCall, event: str, **payload: Any) -> None:
        await call.broadcast(event, **payload)
        await call.broadcast("CombatStateUpdated", state=self.tracker_for(encounter_id).to_dict())

    async def ping(self, encounter_id: str, call: HubCall) -> None:
        await call.reply("Pong", message="Connection is working")

    async def update_initiative(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        initiative = int(call.args["initiative"])
        self.tracker_for(encounter_id).set_initiative(participant_id, initiative)
        await self._changed(encounter_id, call, "InitiativeUpdated", participant_id=participant_id, initiative=initiative)

    async def update_hit_points(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        max_hp = call.args.get("maxHp")
        combatant = self.tracker_for(encounter_id).set_hit_points(
            participant_id, int(call.args["currentHp"]), int(max_hp) if max_hp is not None else None
        )
        await self._changed(
            encounter_id,
            call,
            "HitPointsUpdated",
            participant_id=participant_id,
            current_hp=combatant.current_hp,
            max_hp=combatant.max_hp,
        )

    async def update_armor_class(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        armor_class = int(call.args["armorClass"])
        self.tracker_for(encounter_id).set_armor_class(participant_id, armor_class)
        await self._changed(encounter_id, call, "ArmorClassUpdated", participant_id=participant_id, armor_class=armor_class)

    async def update_saves(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        combatant = self.tracker_for(encounter_id).set_saves(participant_id, dict(call.args["saves"]))
        await self._changed(
            encounter_id,
            call,
            "SavesUpdated",
            participant_id=participant_id,
            saves={"fortitude": combatant.fortitude, "reflex": combatant.reflex, "will": combatant.will},
        )

    async def add_participant(self, encounter_id: str, call: HubCall) -> None:
        combatant = self.tracker_for(encounter_id).add_combatant(Combatant.from_dict(dict(call.args["participant"])))
        await self._changed(encounter_id, call, "ParticipantAdded", participant=combatant.to_dict())

    async def remove_participant(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        self.tracker_for(encounter_id).remove_combatant(participant_id)
        await self._changed(encounter_id, call, "ParticipantRemoved", participant_id=participant_id)

    async def start_combat(self, encounter_id: str, call: HubCall) -> None:
        tracker = self.tracker_for(encounter_id)
        tracker.start_combat()
        await self._changed(encounter_id, call, "CombatStarted", round=tracker.round_number)

    async def end_combat(self, encounter_id: str, call: HubCall) -> None:
        tracker = self.tracker_for(encounter_id)
        tracker.end_combat()
        await self._changed(encounter_id, call, "CombatEnded", round=tracker.round_number)

    async def pause_combat(self, encounter_id: str, call: HubCall) -> None:
        tracker = self.tracker_for(encounter_id)
        if tracker.state != CombatState.ACTIVE:
            raise ValueError("Combat is not running")
        tracker.pause_combat()
        await self._changed(encounter_id, call, "CombatPaused", round=tracker.round_number)

    async def resume_combat(self, encounter_id: str, call: HubCall) -> None:
        tracker = self.tracker_for(encounter_id)
        if tracker.state != CombatState.PAUSED:
            raise ValueError("Combat is not paused")
        tracker.resume_combat()
        await self._changed(encounter_id, call, "CombatResumed", round=tracker.round_number)

    async def next_turn(self, encounter_id: str, call: HubCall) -> None:
        tracker = self.tracker_for(encounter_id)
        if tracker.state != CombatState.ACTIVE:
            raise ValueError("Combat is not active")
        current = tracker.next_turn()
        await self._changed(
            encounter_id,
            call,
            "TurnChanged",
            current_turn=tracker.current_turn,
            round=tracker.round_number,
            participant_id=current.id if current else None,
        )

    async def add_condition(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        condition = str(call.args["condition"])
        value = int(call.args.get("value", 0))
        self.tracker_for(encounter_id).add_condition(participant_id, condition, value)
        await self._changed(
            encounter_id, call, "ConditionAdded", participant_id=participant_id, condition=condition.lower(), value=value
        )

    async def remove_condition(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        condition = str(call.args["condition"])
        self.tracker_for(encounter_id).remove_condition(participant_id, condition)
        await self._changed(encounter_id, call, "ConditionRemoved", participant_id=participant_id, condition=condition.lower())

    async def add_temporary_effect(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        effect = self.tracker_for(encounter_id).add_temporary_effect(participant_id, dict(call.args["effect"]))
        await self._changed(encounter_id, call, "TemporaryEffectAdded", participant_id=participant_id, effect=effect)

    async def remove_temporary_effect(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        effect_id = str(call.args["effectId"])
        self.tracker_for(encounter_id).remove_temporary_effect(participant_id, effect_id)
        await self._changed(encounter_id, call, "TemporaryEffectRemoved", participant_id=participant_id, effect_id=effect_id)

    async def update_position(self, encounter_id: str, call: HubCall) -> None:
        participant_id = call.args["participantId"]
        x, y = int(call.args["x"]), int(call.args["y"])
        self.tracker_for(encounter_id).set_position(participant_id, x, y)
        await self._changed(encounter_id, call, "PositionUpdated", participant_id=participant_id, x=x, y=y)

    async def roll_initiative(self, encounter_id: str, call: HubCall) -> None:
        ids = call.args.get("participantIds")
        if ids is None and call.args.get("participantId"):
            ids = [call.args["participantId"]]
        tracker = self.tracker_for(encounter_id)
        for combatant, result in tracker.roll_initiative(ids):
            await call.broadcast(
                "InitiativeRolled",
                participant_id=combatant.id,
                roll=result.natural_roll,
                modifier=result.modifier,
                result=result.total,
            )
        await call.broadcast("CombatStateUpdated", state=tracker.to_dict())

    async def send_combat_message(self, encounter_id: str, call: HubCall) -> None:
        message = str(call.args["message"])
        message_type = call.args.get("messageType", "action")
        self.tracker_for(encounter_id).log_action(call.sender, message_type, None, message)
        await call.broadcast(
            "CombatMessage", message=message, message_type=message_type, sender=call.sender, timestamp=_now()
        )

    async def request_reroll(self, encounter_id: str, call: HubCall) -> None:
        await call.broadcast(
            "RerollRequested",
            roll_type=str(call.args["rollType"]),
            reason=call.args.get("reason", ""),
            requested_by=call.sender,
            timestamp=_now(),
        )

    async def share_dice_roll(self, encounter_id: str, call: HubCall) -> None:
        """Share a client roll, or roll ``notation`` on the server and share that."""
        if call.args.get("notation"):
            roll = self.roller.roll(str(call.args["notation"])).to_dict()
        else:
            roll = call.args["roll"]
        await call.broadcast("DiceRollShared", roll=roll, rolled_by=call.sender, timestamp=_now())

    async def update_map(self, encounter_id: str, call: HubCall) -> None:
        map_data = dict(call.args["map"])
        self.tracker_for(encounter_id).map_data = map_data
        await call.broadcast("MapUpdated", map=map_data)
