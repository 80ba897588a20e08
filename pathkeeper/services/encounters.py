"""Encounter commands and queries.

The session DM runs encounters; any session member may read them.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session as DbSession

from ..core.errors import DomainException, EncounterErrors, SessionErrors
from ..core.result import Result
from ..database.models import Character, CombatantType, Encounter, NpcMonster, Session
from .mediator import Command, Query

logger = logging.getLogger(__name__)

COMBATANT_TYPES = {t.value for t in CombatantType}


@dataclass
class CreateEncounter(Command):
    session_id: int = 0
    name: str = ""
    description: str | None = None

    def validate(self) -> list[str]:
        if not (self.name or "").strip():
            return ["Encounter name is required"]
        if len(self.name) > 100:
            return ["Encounter name must be 100 characters or less"]
        return []


@dataclass
class AddCombatant(Command):
    encounter_id: int = 0
    combatant_type: str = CombatantType.MONSTER.value
    name: str = ""
    initiative: int = 0
    ref_id: int | None = None
    max_hp: int | None = None

    def validate(self) -> list[str]:
        errors = []
        if self.combatant_type not in COMBATANT_TYPES:
            errors.append(f"Unknown combatant type '{self.combatant_type}'")
        if not (self.name or "").strip() and self.ref_id is None:
            errors.append("Combatant name is required")
        if self.max_hp is not None and self.max_hp < 1:
            errors.append("Hit points must be at least 1")
        return errors


@dataclass
class RemoveCombatant(Command):
    encounter_id: int = 0
    combatant_id: str = ""


@dataclass
class StartEncounter(Command):
    encounter_id: int = 0


@dataclass
class NextTurn(Command):
    encounter_id: int = 0


@dataclass
class EndEncounter(Command):
    encounter_id: int = 0


@dataclass
class ApplyDamage(Command):
    encounter_id: int = 0
    combatant_id: str = ""
    amount: int = 0
    heal: bool = False

    def validate(self) -> list[str]:
        return ["Amount must not be negative"] if self.amount < 0 else []


@dataclass
class GetEncounterById(Query):
    encounter_id: int = 0


@dataclass
class GetEncountersBySession(Query):
    session_id: int = 0


@dataclass
class GetActiveEncounters(Query):
    pass


def _session_for(db: DbSession, session_id: int) -> Session:
    session = db.get(Session, session_id)
    if session is None:
        raise DomainException(SessionErrors.not_found(session_id))
    return session


def _encounter_for_dm(db: DbSession, encounter_id: int, user_id: int | None) -> Encounter:
    encounter = db.get(Encounter, encounter_id)
    if encounter is None:
        raise DomainException(EncounterErrors.not_found(encounter_id))
    if encounter.session.dm_user_id != user_id:
        raise DomainException(EncounterErrors.access_denied())
    return encounter


def create_encounter(db: DbSession, request: CreateEncounter, current_user_id: int | None) -> Result:
    session = _session_for(db, request.session_id)
    if session.dm_user_id != current_user_id:
        return Result.failure(EncounterErrors.access_denied())
    encounter = Encounter.create(session.id, request.name.strip(), request.description)
    db.add(encounter)
    db.flush()
    return Result.success(encounter.to_dict())


def add_combatant(db: DbSession, request: AddCombatant, current_user_id: int | None) -> Result:
    """Add a combatant, taking name and hit points from the referenced row when known."""
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    combatant_type = CombatantType(request.combatant_type)
    name = (request.name or "").strip()
    max_hp = request.max_hp

    if request.ref_id is not None:
        if combatant_type == CombatantType.PC:
            character = db.get(Character, request.ref_id)
            if character is not None:
                name = name or character.name
        else:
            npc = db.get(NpcMonster, request.ref_id)
            if npc is not None:
                name = name or npc.name
                max_hp = max_hp if max_hp is not None else npc.hit_points

    combatant = encounter.add_combatant(combatant_type, name or "Unknown", request.initiative, request.ref_id, max_hp)
    return Result.success({"encounter": encounter.to_dict(), "combatant": combatant})


def remove_combatant(db: DbSession, request: RemoveCombatant, current_user_id: int | None) -> Result:
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    if encounter.get_combatant(request.combatant_id) is None:
        return Result.failure(EncounterErrors.combatant_not_found(request.combatant_id))
    encounter.remove_combatant(request.combatant_id)
    return Result.success(encounter.to_dict())


def start_encounter(db: DbSession, request: StartEncounter, current_user_id: int | None) -> Result:
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    encounter.start()
    logger.info(f"Encounter {encounter.id} started with {len(encounter.combatants)} combatants")
    return Result.success(encounter.to_dict())


def next_turn(db: DbSession, request: NextTurn, current_user_id: int | None) -> Result:
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    encounter.next_turn()
    return Result.success(encounter.to_dict())


def end_encounter(db: DbSession, request: EndEncounter, current_user_id: int | None) -> Result:
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    encounter.end()
    return Result.success(encounter.to_dict())


def apply_damage(db: DbSession, request: ApplyDamage, current_user_id: int | None) -> Result:
    encounter = _encounter_for_dm(db, request.encounter_id, current_user_id)
    if request.heal:
        encounter.heal(request.combatant_id, request.amount)
    else:
        encounter.apply_damage(request.combatant_id, request.amount)
    return Result.success(encounter.to_dict())


def get_encounter_by_id(db: DbSession, request: GetEncounterById, current_user_id: int | None) -> Result:
    encounter = db.get(Encounter, request.encounter_id)
    if encounter is None:
        return Result.failure(EncounterErrors.not_found(request.encounter_id))
    if not encounter.session.is_member(current_user_id):
        return Result.failure(EncounterErrors.access_denied())
    return Result.success(encounter.to_dict())


def get_encounters_by_session(db: DbSession, request: GetEncountersBySession, current_user_id: int | None) -> Result:
    session = _session_for(db, request.session_id)
    if not session.is_member(current_user_id):
        return Result.failure(SessionErrors.access_denied())
    encounters = db.query(Encounter).filter_by(session_id=session.id).order_by(Encounter.created_at.desc()).all()
    return Result.success([e.to_dict() for e in encounters])


def get_active_encounters(db: DbSession, request: GetActiveEncounters, current_user_id: int | None) -> Result:
    encounters = db.query(Encounter).filter(Encounter.is_active.is_(True)).all()
    return Result.success([e.to_dict() for e in encounters if e.session.is_member(current_user_id)])


HANDLERS = {
    CreateEncounter: create_encounter,
    AddCombatant: add_combatant,
    RemoveCombatant: remove_combatant,
    StartEncounter: start_encounter,
    NextTurn: next_turn,
    EndEncounter: end_encounter,
    ApplyDamage: apply_damage,
    GetEncounterById: get_encounter_by_id,
    GetEncountersBySession: get_encounters_by_session,
    GetActiveEncounters: get_active_encounters,
}
