"""NPC and monster commands and queries."""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from sqlalchemy.orm import Session as DbSession

from ..core.errors import DomainError, DomainException, GeneralErrors, SessionErrors
from ..core.result import Result
from ..database.models import NpcMonster, NpcMonsterType, Session
from .mediator import Command, Query

NPC_NOT_FOUND = "NPC.NOT_FOUND"
NPC_NOT_OWNER = "NPC.NOT_OWNER"

# Fields a caller may set on create or update
EDITABLE_FIELDS = (
    "name",
    "description",
    "level",
    "size",
    "creature_type",
    "alignment",
    "armor_class",
    "hit_points",
    "speed",
    "ability_scores",
    "skills",
    "attacks",
    "abilities",
    "traits",
    "saves",
    "is_template",
)


def _npc_not_found(npc_id: int) -> DomainError:
    return DomainError(NPC_NOT_FOUND, f"NPC/Monster {npc_id} was not found")


def _npc_type(value: Any) -> NpcMonsterType:
    if isinstance(value, int) or str(value).isdigit():
        return NpcMonsterType(int(value))
    return NpcMonsterType[str(value).strip().upper()]


def _validate_fields(data: dict[str, Any]) -> list[str]:
    errors = []
    unknown = sorted(set(data) - set(EDITABLE_FIELDS) - {"type"})
    if unknown:
        errors.append(f"Unknown fields: {', '.join(unknown)}")
    if "name" in data and not str(data["name"] or "").strip():
        errors.append("Name is required")
    for key in ("level", "armor_class", "hit_points", "speed"):
        if key in data and not isinstance(data[key], int):
            errors.append(f"{key} must be an integer")
    if isinstance(data.get("level"), int) and not -1 <= data["level"] <= 25:
        errors.append("Level must be between -1 and 25")
    if isinstance(data.get("hit_points"), int) and data["hit_points"] < 1:
        errors.append("Hit points must be at least 1")
    if "type" in data:
        try:
            _npc_type(data["type"])
        except (KeyError, ValueError):
            errors.append(f"Unknown creature type '{data['type']}'")
    return errors


@dataclass
class CreateNpcMonster(Command):
    data: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> list[str]:
        errors = _validate_fields(self.data)
        if "name" not in self.data:
            errors.insert(0, "Name is required")
        return errors


@dataclass
class UpdateNpcMonster(Command):
    npc_id: int = 0
    data: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> list[str]:
        return _validate_fields(self.data)


@dataclass
class DeleteNpcMonster(Command):
    npc_id: int = 0


@dataclass
class AssignNpcToSession(Command):
    npc_id: int = 0
    session_id: int | None = None


@dataclass
class GetNpcMonsterById(Query):
    npc_id: int = 0


@dataclass
class GetNpcMonstersByOwner(Query):
    pass


@dataclass
class GetNpcMonstersBySession(Query):
    session_id: int = 0


@dataclass
class GetNpcMonsterLibrary(Query):
    requires_auth: ClassVar[bool] = False

    monster_type: str | None = None
    min_level: int | None = None
    max_level: int | None = None
    search: str | None = None


def _apply(npc: NpcMonster, data: dict[str, Any]) -> None:
    for key in EDITABLE_FIELDS:
        if key in data:
            setattr(npc, key, data[key])
    if "type" in data:
        npc.type = _npc_type(data["type"])


def _owned(db: DbSession, npc_id: int, user_id: int | None) -> NpcMonster:
    npc = db.get(NpcMonster, npc_id)
    if npc is None:
        raise DomainException(_npc_not_found(npc_id))
    if npc.owner_id != user_id:
        raise DomainException(DomainError(NPC_NOT_OWNER, "You do not own this NPC/Monster"))
    return npc


def create_npc(db: DbSession, request: CreateNpcMonster, current_user_id: int | None) -> Result:
    npc = NpcMonster(owner_id=current_user_id, source="Custom")
    _apply(npc, request.data)
    db.add(npc)
    db.flush()
    return Result.success(npc.to_dict())


def update_npc(db: DbSession, request: UpdateNpcMonster, current_user_id: int | None) -> Result:
    npc = _owned(db, request.npc_id, current_user_id)
    _apply(npc, request.data)
    return Result.success(npc.to_dict())


def delete_npc(db: DbSession, request: DeleteNpcMonster, current_user_id: int | None) -> Result:
    npc = _owned(db, request.npc_id, current_user_id)
    db.delete(npc)
    return Result.success({"deleted": request.npc_id})


def assign_npc_to_session(db: DbSession, request: AssignNpcToSession, current_user_id: int | None) -> Result:
    """Assign to a session the caller runs, or unassign when ``session_id`` is None."""
    npc = _owned(db, request.npc_id, current_user_id)
    if request.session_id is None:
        npc.remove_from_session()
        return Result.success(npc.to_dict())

    session = db.get(Session, request.session_id)
    if session is None:
        return Result.failure(SessionErrors.not_found(request.session_id))
    if session.dm_user_id != current_user_id:
        return Result.failure(SessionErrors.access_denied())
    npc.assign_to_session(session.id)
    return Result.success(npc.to_dict())


def get_npc_by_id(db: DbSession, request: GetNpcMonsterById, current_user_id: int | None) -> Result:
    npc = db.get(NpcMonster, request.npc_id)
    if npc is None:
        return Result.failure(_npc_not_found(request.npc_id))
    if not npc.is_library and npc.owner_id != current_user_id:
        session = db.get(Session, npc.session_id) if npc.session_id else None
        if session is None or not session.is_member(current_user_id):
            return Result.failure(GeneralErrors.access_denied("You do not have access to this NPC/Monster"))
    return Result.success(npc.to_dict())


def get_npcs_by_owner(db: DbSession, request: GetNpcMonstersByOwner, current_user_id: int | None) -> Result:
    npcs = db.query(NpcMonster).filter_by(owner_id=current_user_id).order_by(NpcMonster.name).all()
    return Result.success([n.to_dict() for n in npcs])


def get_npcs_by_session(db: DbSession, request: GetNpcMonstersBySession, current_user_id: int | None) -> Result:
    session = db.get(Session, request.session_id)
    if session is None:
        return Result.failure(SessionErrors.not_found(request.session_id))
    if not session.is_member(current_user_id):
        return Result.failure(SessionErrors.access_denied())
    npcs = db.query(NpcMonster).filter_by(session_id=session.id).order_by(NpcMonster.name).all()
    return Result.success([n.to_dict() for n in npcs])


def get_npc_library(db: DbSession, request: GetNpcMonsterLibrary, current_user_id: int | None) -> Result:
    """Library content filtered by type, level range and name."""
    query = db.query(NpcMonster).filter(NpcMonster.owner_id.is_(None))
    if request.monster_type:
        try:
            query = query.filter(NpcMonster.type == _npc_type(request.monster_type))
        except (KeyError, ValueError):
            return Result.failure(GeneralErrors.validation_failed([f"Unknown creature type '{request.monster_type}'"]))
    if request.min_level is not None:
        query = query.filter(NpcMonster.level >= request.min_level)
    if request.max_level is not None:
        query = query.filter(NpcMonster.level <= request.max_level)
    if request.search:
        query = query.filter(NpcMonster.name.ilike(f"%{request.search.strip()}%"))
    npcs = query.order_by(NpcMonster.level, NpcMonster.name).all()
    return Result.success([n.to_dict() for n in npcs])


HANDLERS = {
    CreateNpcMonster: create_npc,
    UpdateNpcMonster: update_npc,
    DeleteNpcMonster: delete_npc,
    AssignNpcToSession: assign_npc_to_session,
    GetNpcMonsterById: get_npc_by_id,
    GetNpcMonstersByOwner: get_npcs_by_owner,
    GetNpcMonstersBySession: get_npcs_by_session,
    GetNpcMonsterLibrary: get_npc_library,
}
