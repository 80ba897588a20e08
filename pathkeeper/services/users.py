"""User commands and queries."""

from dataclasses import dataclass
from typing import ClassVar

from sqlalchemy.orm import Session

from ..core.errors import UserErrors
from ..core.result import Result
from ..database.models import User, UserRole
from .mediator import Command, Query


@dataclass
class CreateUser(Command):
    requires_auth: ClassVar[bool] = False

    email: str = ""
    username: str = ""
    display_name: str | None = None
    role: str = UserRole.PLAYER.value

    def validate(self) -> list[str]:
        errors = []
        if "@" not in (self.email or ""):
            errors.append("A valid email is required")
        if not (3 <= len((self.username or "").strip()) <= 50):
            errors.append("Username must be between 3 and 50 characters")
        if self.role not in {r.value for r in UserRole}:
            errors.append(f"Unknown role '{self.role}'")
        return errors


@dataclass
class GetUser(Query):
    user_id: int = 0


def create_user(db: Session, request: CreateUser, current_user_id: int | None) -> Result:
    email = request.email.strip().lower()
    username = request.username.strip()
    if db.query(User).filter_by(email=email).first():
        return Result.failure(UserErrors.email_already_exists(email))
    if db.query(User).filter_by(username=username).first():
        return Result.failure(UserErrors.username_already_exists(username))

    user = User(email=email, username=username, display_name=request.display_name, role=UserRole(request.role))
    db.add(user)
    db.flush()
    return Result.success(user.to_dict())


def get_user(db: Session, request: GetUser, current_user_id: int | None) -> Result:
    user = db.get(User, request.user_id)
    if user is None:
        return Result.failure(UserErrors.not_found(request.user_id))
    return Result.success(user.to_dict())


HANDLERS = {
    CreateUser: create_user,
    GetUser: get_user,
}
