"""Play session commands and queries."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session as DbSession

from ..core.errors import CharacterErrors, GeneralErrors, SessionErrors, UserErrors
from ..core.result import Result
from ..database.models import Character, MemberRole, Session, SessionCode, User
from .mediator import Command, Query

logger = logging.getLogger(__name__)


@dataclass
class CreateSession(Command):
    name: str = ""
    description: str | None = None

    def validate(self) -> list[str]:
        errors = []
        if not (self.name or "").strip():
            errors.append("Session name is required")
        elif len(self.name) > 100:
            errors.append("Session name must be 100 characters or less")
        if self.description and len(self.description) > 500:
            errors.append("Description must be 500 characters or less")
        return errors


@dataclass
class GetSession(Query):
    session_id: int | None = None
    code: str | None = None

    def validate(self) -> list[str]:
        if self.session_id is None and not self.code:
            return ["Either a session id or a code is required"]
        return []


@dataclass
class JoinSession(Command):
    code: str = ""
    alias: str | None = None


@dataclass
class LeaveSession(Command):
    session_id: int = 0


@dataclass
class AddCharacterToSession(Command):
    session_id: int = 0
    character_id: int = 0


def _unique_code(db: DbSession) -> SessionCode:
    code = SessionCode.generate()
    while db.query(Session).filter_by(code=str(code)).first() is not None:
        code = SessionCode.generate()
    return code


def create_session(db: DbSession, request: CreateSession, current_user_id: int | None) -> Result:
    if db.get(User, current_user_id) is None:
        return Result.failure(UserErrors.not_found(current_user_id))

    session = Session.create(
        dm_user_id=current_user_id,
        name=request.name.strip(),
        description=request.description,
        code=_unique_code(db),
    )
    db.add(session)
    db.flush()
    logger.info(f"Created session {session.code} for user {current_user_id}")
    return Result.success(session.to_dict())


def get_session_by_ref(db: DbSession, request: GetSession, current_user_id: int | None) -> Result:
    if request.session_id is not None:
        session = db.get(Session, request.session_id)
        ref = request.session_id
    else:
        code = SessionCode.from_string(request.code)
        session = db.query(Session).filter_by(code=str(code)).first()
        ref = str(code)

    if session is None:
        return Result.failure(SessionErrors.not_found(ref))
    if not session.is_member(current_user_id):
        return Result.failure(SessionErrors.access_denied())
    return Result.success(session.to_dict())


def join_session(db: DbSession, request: JoinSession, current_user_id: int | None) -> Result:
    code = SessionCode.from_string(request.code)
    session = db.query(Session).filter_by(code=str(code)).first()
    if session is None:
        return Result.failure(SessionErrors.not_found(str(code)))
    if not session.is_active:
        return Result.failure(SessionErrors.inactive())

    user = db.get(User, current_user_id)
    if user is None:
        return Result.failure(UserErrors.not_found(current_user_id))

    alias = (request.alias or "").strip() or user.display_name or user.username
    session.add_member(current_user_id, MemberRole.PLAYER, alias)
    db.flush()
    return Result.success(session.to_dict())


def leave_session(db: DbSession, request: LeaveSession, current_user_id: int | None) -> Result:
    session = db.get(Session, request.session_id)
    if session is None:
        return Result.failure(SessionErrors.not_found(request.session_id))
    session.remove_member(current_user_id)
    return Result.success(session.to_dict())


def add_character_to_session(db: DbSession, request: AddCharacterToSession, current_user_id: int | None) -> Result:
    session = db.get(Session, request.session_id)
    if session is None:
        return Result.failure(SessionErrors.not_found(request.session_id))
    character = db.get(Character, request.character_id)
    if character is None:
        return Result.failure(CharacterErrors.not_found(request.character_id))
    if not character.is_owned_by(current_user_id):
        return Result.failure(CharacterErrors.not_owner())
    if not session.is_active:
        return Result.failure(GeneralErrors.invalid_operation("This session is no longer active"))

    session.add_character(character)
    db.flush()
    return Result.success(character.to_dict())


HANDLERS = {
    CreateSession: create_session,
    GetSession: get_session_by_ref,
    JoinSession: join_session,
    LeaveSession: leave_session,
    AddCharacterToSession: add_character_to_session,
}
